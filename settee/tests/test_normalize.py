# settee: a lightweight Couch client with revision tracking
# Copyright (C) 2011-2016 Novacut Inc
#
# This file is part of `settee`.
#
# `settee` is free software: you can redistribute it and/or modify it under
# the terms of the GNU Lesser General Public License as published by the Free
# Software Foundation, either version 3 of the License, or (at your option) any
# later version.
#
# `settee` is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or FITNESS
# FOR A PARTICULAR PURPOSE.  See the GNU Lesser General Public License for more
# details.
#
# You should have received a copy of the GNU Lesser General Public License along
# with `settee`.  If not, see <http://www.gnu.org/licenses/>.
#
# Authors:
#   Jason Gerard DeRose <jderose@novacut.com>
#

"""
Unit tests for the `settee.normalize` module.
"""

from unittest import TestCase
import json

from settee.normalize import (
    Row, ROW_SHAPES, row_shape, is_pair_list, normalize, denormalize,
)


class TestRowShapes(TestCase):
    def test_row_shapes(self):
        self.assertEqual(
            [s.name for s in ROW_SHAPES],
            ['value', 'value+doc', 'null', 'null+doc']
        )
        self.assertEqual(len(set(ROW_SHAPES)), 4)
        for shape in ROW_SHAPES:
            self.assertEqual(shape.has_doc, 'doc' in shape.keys)
            self.assertEqual(shape.has_doc, shape.name.endswith('+doc'))
            self.assertEqual(shape.null_value, shape.name.startswith('null'))

    def test_row_shape(self):
        doc = {'_id': 'a', '_rev': '1-a'}
        self.assertEqual(row_shape({'id': 'a', 'key': None, 'value': {}}), 'value')
        self.assertEqual(
            row_shape({'id': 'a', 'key': [1, 2], 'value': {'x': 1}, 'doc': doc}),
            'value+doc'
        )
        self.assertEqual(row_shape({'id': 'a', 'key': 'k', 'value': None}), 'null')
        self.assertEqual(
            row_shape({'id': 'a', 'key': 'k', 'value': None, 'doc': doc}),
            'null+doc'
        )

        # Shapes that don't match any variant:
        self.assertIsNone(row_shape({'id': 'a', 'key': 'k', 'value': 17}))
        self.assertIsNone(row_shape({'id': 'a', 'key': 'k', 'value': [1]}))
        self.assertIsNone(row_shape({'id': 'a', 'key': 'k'}))
        self.assertIsNone(
            row_shape({'id': 'a', 'key': 'k', 'value': None, 'extra': 1})
        )
        self.assertIsNone(
            row_shape({'id': 'a', 'key': 'k', 'value': None, 'doc': None})
        )
        self.assertIsNone(row_shape({}))
        self.assertIsNone(row_shape([]))
        self.assertIsNone(row_shape('id'))


class TestRow(TestCase):
    def test_attributes(self):
        row = Row(id='a', key='k', value={'n': 1}, shape='value')
        self.assertEqual(row, {'id': 'a', 'key': 'k', 'value': {'n': 1}})
        self.assertEqual(row.id, 'a')
        self.assertEqual(row.key, 'k')
        self.assertEqual(row.value, {'n': 1})
        self.assertIsNone(row.doc)
        self.assertIs(row.has_doc, False)
        self.assertEqual(row.shape, 'value')

        row['doc'] = {'_id': 'a'}
        self.assertEqual(row.doc, {'_id': 'a'})
        self.assertIs(row.has_doc, True)

    def test_json(self):
        row = Row(id='a', key='k', value=None, shape='null')
        self.assertEqual(
            json.dumps(row, sort_keys=True),
            '{"id": "a", "key": "k", "value": null}'
        )


class TestNormalize(TestCase):
    def test_scalars(self):
        for value in (None, True, False, 0, 17, 1.5, '', 'мир'):
            self.assertEqual(normalize(value), value)

    def test_objects(self):
        obj = {'_id': 'foo', 'nested': {'a': [1, {'b': None}]}}
        result = normalize(obj)
        self.assertEqual(result, obj)
        self.assertIsNot(result, obj)
        self.assertIsNot(result['nested'], obj['nested'])
        self.assertIs(type(result), dict)
        self.assertIs(type(result['nested']), dict)

    def test_rows(self):
        rows = [
            {'id': 'a', 'key': 'x', 'value': {'n': 1}},
            {'id': 'b', 'key': 'y', 'value': {'n': 2}, 'doc': {'_id': 'b'}},
            {'id': 'c', 'key': 'z', 'value': None},
            {'id': 'd', 'key': 'w', 'value': None, 'doc': {'_id': 'd'}},
            {'id': 'e', 'key': 'v', 'value': 5},
        ]
        result = normalize(rows)
        self.assertEqual(result, rows)
        self.assertEqual(
            [getattr(r, 'shape', None) for r in result],
            ['value', 'value+doc', 'null', 'null+doc', None]
        )
        self.assertIs(type(result[4]), dict)
        for row in result[:4]:
            self.assertIsInstance(row, Row)
        self.assertNotIn('doc', result[0])
        self.assertNotIn('doc', result[2])

    def test_nested_rows(self):
        obj = {
            'total_rows': 1,
            'rows': [{'id': 'a', 'key': 'a', 'value': {'rev': '1-a'}}],
        }
        result = normalize(obj)
        self.assertIs(type(result), dict)
        self.assertIsInstance(result['rows'][0], Row)
        self.assertEqual(result['rows'][0].value, {'rev': '1-a'})

    def test_pair_list(self):
        self.assertIs(is_pair_list([['a', 1]]), True)
        self.assertIs(is_pair_list([('a', 1), ('b', None)]), True)
        self.assertIs(is_pair_list([]), False)
        self.assertIs(is_pair_list([['a', 1, 2]]), False)
        self.assertIs(is_pair_list([[1, 'a']]), False)
        self.assertIs(is_pair_list({'a': 1}), False)

        self.assertEqual(
            normalize([['ok', True], ['rows', [{'x': 1}]]]),
            {'ok': True, 'rows': [{'x': 1}]}
        )
        # Only at the top level:
        self.assertEqual(
            normalize({'pairs': [['a', 1]]}),
            {'pairs': [['a', 1]]}
        )

    def test_denormalize(self):
        rows = [
            {'id': 'a', 'key': 'x', 'value': None, 'doc': {'_id': 'a'}},
            {'plain': [1, 2]},
        ]
        result = denormalize(normalize(rows))
        self.assertEqual(result, rows)
        self.assertIs(type(result[0]), dict)
        self.assertFalse(hasattr(result[0], 'shape'))

    def test_round_trip(self):
        doc = {'_id': 'a', '_rev': '1-a', 'tags': ['x', {'y': None}]}
        values = [
            {'id': 'a', 'key': ['k', 1], 'value': {'n': 1}},
            {'id': 'a', 'key': 'k', 'value': {'n': 1}, 'doc': doc},
            {'id': 'a', 'key': 'k', 'value': None},
            {'id': 'a', 'key': 'k', 'value': None, 'doc': doc},
            doc,
            {'total_rows': 0, 'offset': 0, 'rows': []},
            {'error': 'not_found', 'reason': 'missing'},
        ]
        for value in values:
            v = normalize(value)
            self.assertEqual(normalize(denormalize(v)), v)
            self.assertEqual(denormalize(v), value)
