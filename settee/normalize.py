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
Normalize the JSON shapes CouchDB returns.

Views and ``_all_docs`` return rows in one of four shapes, depending on whether
the view emitted an object or ``null`` as the value, and whether the query used
``include_docs``:

>>> row_shape({'id': 'a', 'key': 1, 'value': {'n': 1}})
'value'
>>> row_shape({'id': 'a', 'key': 1, 'value': {'n': 1}, 'doc': {'_id': 'a'}})
'value+doc'
>>> row_shape({'id': 'a', 'key': 1, 'value': None})
'null'
>>> row_shape({'id': 'a', 'key': 1, 'value': None, 'doc': {'_id': 'a'}})
'null+doc'

`normalize()` turns each of these into a `Row`.  Anything else is handled by
the default case, which copies the object's own key/value pairs into a new
``dict``:

>>> row_shape({'id': 'a', 'key': 1, 'value': 17})
>>> normalize({'id': 'a', 'key': 1, 'value': 17})
{'id': 'a', 'key': 1, 'value': 17}

"""

from collections import namedtuple


RowShape = namedtuple('RowShape', 'name keys null_value has_doc')

ROW_KEYS = frozenset(['id', 'key', 'value'])
DOC_ROW_KEYS = ROW_KEYS.union(['doc'])

ROW_SHAPES = (
    RowShape('value', ROW_KEYS, False, False),
    RowShape('value+doc', DOC_ROW_KEYS, False, True),
    RowShape('null', ROW_KEYS, True, False),
    RowShape('null+doc', DOC_ROW_KEYS, True, True),
)


class Row(dict):
    """
    A view result row.

    A `Row` is a ``dict`` (so it compares equal to the raw row it came from)
    with attribute access to the row fields:

    >>> row = normalize({'id': 'a', 'key': 1, 'value': None})
    >>> (row.id, row.key, row.value, row.has_doc, row.shape)
    ('a', 1, None, False, 'null')

    """

    __slots__ = ('shape',)

    def __init__(self, *args, shape=None, **kw):
        super().__init__(*args, **kw)
        self.shape = shape

    @property
    def id(self):
        return self['id']

    @property
    def key(self):
        return self['key']

    @property
    def value(self):
        return self['value']

    @property
    def doc(self):
        return self.get('doc')

    @property
    def has_doc(self):
        return 'doc' in self


def _matches(shape, obj):
    if obj.keys() != shape.keys:
        return False
    if shape.null_value:
        if obj['value'] is not None:
            return False
    elif not isinstance(obj['value'], dict):
        return False
    return not shape.has_doc or isinstance(obj['doc'], dict)


def row_shape(obj):
    """
    Return the name of the row shape *obj* matches, or None.
    """
    if isinstance(obj, dict):
        for shape in ROW_SHAPES:
            if _matches(shape, obj):
                return shape.name


def _normalize_row(obj, shape):
    row = Row(
        id=obj['id'],
        key=_normalize(obj['key']),
        value=(None if shape.null_value else _normalize(obj['value'])),
        shape=shape.name,
    )
    if shape.has_doc:
        row['doc'] = _normalize(obj['doc'])
    return row


def _normalize(value):
    if isinstance(value, dict):
        for shape in ROW_SHAPES:
            if _matches(shape, value):
                return _normalize_row(value, shape)
        return dict((k, _normalize(v)) for (k, v) in value.items())
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def is_pair_list(value):
    """
    Return True if *value* is a non-empty list of ``[str, value]`` pairs.

    >>> is_pair_list([['a', 1], ['b', 2]])
    True
    >>> is_pair_list([1, 2])
    False

    """
    if not isinstance(value, list) or not value:
        return False
    for item in value:
        if not (isinstance(item, (list, tuple)) and len(item) == 2):
            return False
        if not isinstance(item[0], str):
            return False
    return True


def normalize(value):
    """
    Return a normalized copy of the decoded JSON *value*.

    Row shaped objects become `Row` instances, wherever they are nested.  Other
    objects become a new ``dict`` of their own key/value pairs, lists are
    normalized item by item, and scalars pass through.  At the top level, a
    list of ``[key, value]`` pairs is flattened into a ``dict``:

    >>> normalize([['ok', True], ['id', 'a']])
    {'ok': True, 'id': 'a'}

    """
    if is_pair_list(value):
        return dict((k, _normalize(v)) for (k, v) in value)
    return _normalize(value)


def denormalize(value):
    """
    Return the plain JSON value for the normalized *value*.

    `Row` instances become plain ``dict`` instances, so this is safe to pass
    to ``json.dumps()``.
    """
    if isinstance(value, dict):
        return dict((k, denormalize(v)) for (k, v) in value.items())
    if isinstance(value, list):
        return [denormalize(v) for v in value]
    return value
