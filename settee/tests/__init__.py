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
Unit tests for the `settee` package.

Shared fixtures live here: fake degu connections for the unit tests, and the
base classes for live tests against a temporary CouchDB.
"""

from unittest import TestCase
import os
import shutil
import json

from dbase32 import random_id
from degu.client import Response


def random_doc_id():
    """
    So we can tell our random test IDs from server-generated ones, we use
    160-bit IDs.
    """
    return random_id(20)


def random_dbname():
    return 'db-' + random_id().lower()


def random_basic():
    return dict(
        (k, random_id())
        for k in ('username', 'password')
    )


class FakeBody:
    def __init__(self, data):
        self.__data = data

    def read(self):
        return self.__data


class FakeChunkedBody:
    chunked = True

    def __init__(self, *chunks):
        self._chunks = chunks

    def read(self):
        return b''.join(self._chunks)

    def __iter__(self):
        for data in self._chunks:
            yield (None, data)
        yield (None, b'')


def json_response(status, obj, headers=None, reason='OK'):
    h = {'content-type': 'application/json'}
    if headers:
        h.update(headers)
    data = json.dumps(obj).encode()
    return Response(status, reason, h, FakeBody(data))


def empty_response(status, headers=None, reason='OK'):
    return Response(status, reason, ({} if headers is None else headers), None)


class FakeConnection:
    """
    Stands in for a ``degu.client.Connection``, replaying canned responses.
    """

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []
        self.closed = False

    def request(self, method, uri, headers, body):
        self.calls.append((method, uri, headers, body))
        return self._responses.pop(0)

    def close(self):
        self.closed = True


class FakeClient:
    def __init__(self, conn):
        self.conn = conn
        self.connects = 0

    def connect(self):
        self.connects += 1
        return self.conn


def install(inst, *responses):
    """
    Make *inst* send its requests to a `FakeConnection` with *responses*.
    """
    conn = FakeConnection(*responses)
    inst.ctx.threadlocal.connection = conn
    return conn


class LiveTestCase(TestCase):
    """
    Base class for tests that need a live CouchDB instance.

    These tests are skipped when SETTEE_TEST_NO_LIVE is "true", or when
    `usercouch` or the CouchDB binary isn't available.

    Sub-classes should call ``super().setUp()`` first thing in their
    ``setUp()`` methods.
    """

    def setUp(self):
        if os.environ.get('SETTEE_TEST_NO_LIVE') == 'true':
            self.skipTest('SETTEE_TEST_NO_LIVE is true')
        if shutil.which('couchdb') is None:
            self.skipTest('couchdb is not installed')
        try:
            from usercouch.misc import TempCouch
        except ImportError:
            self.skipTest('usercouch is not installed')
        self.TempCouch = TempCouch


class CouchTestCase(LiveTestCase):

    def setUp(self):
        super().setUp()
        self.tmpcouch = self.TempCouch()
        self.env = self.tmpcouch.bootstrap()

    def tearDown(self):
        self.tmpcouch = None
        self.env = None
