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
Follow a database changes feed.

A `ChangesStream` yields three kinds of events, in the order the server sent
them:

    * `Change` - a document was created, updated or deleted

    * `Done` - the feed ended, carrying the last sequence

    * `StreamError` - one line of the feed couldn't be parsed; the stream keeps
      going, so you can log it and carry on, or cancel

Each event has a ``kind`` attribute (``'change'``, ``'done'`` or ``'error'``).

For a one-shot feed:

>>> from settee import Database
>>> db = Database('foo')  #doctest: +SKIP
>>> for event in db.follow_once():  #doctest: +SKIP
...     print(event)
...
Change(seq=1, id='bar', revs=['1-967a00dff5e02add41819138abb3284d'], deleted=False, doc=None)
Done(last_seq=1)

For a continuous feed, the stream owns its own connection until a `Done`
arrives or you call `ChangesStream.cancel()`:

>>> with db.follow(continuous=True, heartbeat=True) as stream:  #doctest: +SKIP
...     for event in stream:
...         handle(event)

"""

import threading
from queue import Queue, Empty, Full
import logging
from collections import namedtuple

from dbase32 import random_id

from . import (
    check_response, loads, dumps, MalformedResponse, SmartQueue, _start_thread
)
from .normalize import normalize


log = logging.getLogger()

IDLE = 'idle'
STREAMING = 'streaming'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
FAILED = 'failed'
FINISHED = frozenset([COMPLETED, CANCELLED, FAILED])

# Seconds a blocked worker waits before checking for a cancel again
PUT_TIMEOUT = 0.25


class Change(namedtuple('Change', 'seq id revs deleted doc')):
    __slots__ = ()
    kind = 'change'


class Done(namedtuple('Done', 'last_seq')):
    __slots__ = ()
    kind = 'done'


class StreamError(namedtuple('StreamError', 'data reason')):
    """
    A line of the feed that couldn't be turned into a `Change` or `Done`.

    This is an event, not an exception; the stream isn't terminated by it.
    """
    __slots__ = ()
    kind = 'error'


def parse_row(obj, data=None):
    """
    Return the event for one decoded changes row *obj*.

    >>> parse_row({'seq': 2, 'id': 'foo', 'changes': [{'rev': '1-a'}]})
    Change(seq=2, id='foo', revs=['1-a'], deleted=False, doc=None)
    >>> parse_row({'last_seq': 2})
    Done(last_seq=2)

    """
    if data is None:
        data = obj
    if not isinstance(obj, dict):
        return StreamError(data, 'changes row is not an object')
    if 'last_seq' in obj:
        return Done(obj['last_seq'])
    if 'error' in obj:
        return StreamError(data, obj.get('reason', obj['error']))
    try:
        revs = [c['rev'] for c in obj.get('changes', [])]
        return Change(
            obj['seq'],
            obj['id'],
            revs,
            obj.get('deleted', False) is True,
            (normalize(obj['doc']) if obj.get('doc') is not None else None),
        )
    except (KeyError, TypeError) as e:
        return StreamError(data, 'bad changes row: {!r}'.format(e))


def parse_line(line):
    """
    Return the event for one line of a continuous feed.

    Heartbeats (blank lines) return None:

    >>> parse_line(b'')
    >>> parse_line(b'{"last_seq":3}')
    Done(last_seq=3)
    >>> parse_line(b'{"seq":').kind
    'error'

    """
    line = line.strip()
    if not line:
        return None
    try:
        obj = loads(line, 'changes line')
    except MalformedResponse as e:
        return StreamError(line, str(e))
    return parse_row(obj, line)


def parse_result(result):
    """
    Return the list of events for a one-shot ``_changes`` response.

    >>> parse_result({'results': [{'seq': 1, 'id': 'a', 'changes': []}], 'last_seq': 1})
    [Change(seq=1, id='a', revs=[], deleted=False, doc=None), Done(last_seq=1)]

    """
    if not (isinstance(result, dict) and 'last_seq' in result
            and isinstance(result.get('results'), list)):
        raise MalformedResponse(
            'expected results and last_seq in changes response', result
        )
    events = [parse_row(row) for row in result['results']]
    events.append(Done(result['last_seq']))
    return events


class ChangesParser:
    """
    Incrementally split a continuous feed into events.

    Bytes are buffered until a newline completes a line, so chunk boundaries
    can fall anywhere:

    >>> parser = ChangesParser()
    >>> list(parser.feed(b'{"seq":1,"id":"a","chan'))
    []
    >>> list(parser.feed(b'ges":[]}\\n\\n{"last_seq":1}\\n'))
    [Change(seq=1, id='a', revs=[], deleted=False, doc=None), Done(last_seq=1)]

    """

    def __init__(self):
        self._buf = bytearray()

    def feed(self, data):
        self._buf.extend(data)
        while True:
            index = self._buf.find(b'\n')
            if index < 0:
                break
            line = bytes(self._buf[:index])
            del self._buf[:index + 1]
            event = parse_line(line)
            if event is not None:
                yield event

    def flush(self):
        line = bytes(self._buf)
        self._buf.clear()
        event = parse_line(line)
        if event is not None:
            yield event


def iter_chunks(body):
    """
    Yield the data of each chunk in a degu response *body*.
    """
    if body is None:
        return
    if getattr(body, 'chunked', False):
        for (extension, data) in body:
            if data:
                yield data
    else:
        data = body.read()
        if data:
            yield data


class ChangesQueue(SmartQueue):
    """
    One-slot queue between a stream's worker thread and its consumer.

    Once the stream is cancelled, `ChangesQueue.get()` returns None without
    handing over anything still queued.
    """

    def __init__(self, stream):
        super().__init__(1)
        self.stream = stream

    def get(self, block=True, timeout=None):
        if self.stream.cancelled:
            return None
        item = Queue.get(self, block, timeout)
        if self.stream.cancelled:
            return None
        if isinstance(item, Exception):
            raise item
        return item

    def wake(self):
        # Unblock a consumer waiting in get() after a cancel:
        try:
            Queue.get(self, False)
        except Empty:
            pass
        try:
            self.put_nowait(None)
        except Full:
            pass


def _put(stream, queue, item):
    while not stream.cancelled:
        try:
            queue.put(item, timeout=PUT_TIMEOUT)
            return True
        except Full:
            pass
    return False


def _stream_worker(stream, queue):
    try:
        for event in stream:
            if not _put(stream, queue, event):
                return
        _put(stream, queue, None)
    except Exception as e:
        _put(stream, queue, e)


class ChangesStream:
    """
    An ordered, cancellable sequence of changes events.

    The stream moves through these states:

        ``IDLE`` -> ``STREAMING`` -> ``COMPLETED``, ``CANCELLED`` or ``FAILED``

    Only one consumer may iterate a stream.  `ChangesStream.cancel()` can be
    called from any thread; at most the one event already being delivered will
    reach the consumer after it.
    """

    def __init__(self, db, once=False, **options):
        continuous = (
            options.pop('continuous', False)
            or options.get('feed') == 'continuous'
        )
        if once and continuous:
            raise ValueError('a one-shot changes feed cannot be continuous')
        heartbeat = options.pop('heartbeat', None)
        if continuous:
            options['feed'] = 'continuous'
        if heartbeat:
            options['heartbeat'] = heartbeat
        self.db = db
        self.options = options
        self.continuous = bool(continuous)
        self.ref = random_id()
        self.state = IDLE
        self.conn = None
        self.response = None
        self.events = None
        self.queue = None
        self.thread = None
        self._consumer = None
        self._cancel = threading.Event()
        self._lock = threading.Lock()

    def __repr__(self):
        return '{}({!r}, {!r})'.format(
            self.__class__.__name__, self.db, self.state
        )

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
        return False

    @property
    def cancelled(self):
        return self._cancel.is_set()

    def open(self):
        """
        Make the ``_changes`` request.

        For a continuous feed, this connects a new connection that the stream
        owns until it finishes.  Otherwise the single response is read and
        parsed right away.
        """
        if self.state != IDLE:
            raise RuntimeError(
                'cannot open {} changes stream {}'.format(self.state, self.ref)
            )
        try:
            if self.continuous:
                (path, headers) = self.db.build_request('GET', ('_changes',),
                    self.options, {'accept': 'application/json'}
                )
                self.conn = self.db.ctx.stream_client.connect()
                response = self.conn.request('GET', path, headers, None)
                self.response = check_response(response, 'GET', path)
            else:
                result = self.db.get('_changes', **self.options)
                self.events = parse_result(result)
        except Exception:
            self._finish(FAILED)
            raise
        self.state = STREAMING
        log.info('opened changes stream %s on %r', self.ref, self.db)
        return self

    def cancel(self):
        """
        Stop the stream and close its connection.
        """
        if self._cancel.is_set():
            return
        self._cancel.set()
        if self._finish(CANCELLED):
            log.info('cancelled changes stream %s', self.ref)
        if self.queue is not None:
            self.queue.wake()

    def close(self):
        if self.state not in FINISHED:
            self.cancel()

    def _finish(self, state):
        with self._lock:
            if self.state in FINISHED:
                return False
            self.state = state
            conn = self.conn
            self.conn = None
            self.response = None
        if conn is not None:
            conn.close()
        return True

    def __iter__(self):
        with self._lock:
            if self._consumer is not None:
                raise RuntimeError(
                    'changes stream {} already has a consumer'.format(self.ref)
                )
            self._consumer = threading.current_thread()
        if self.state == IDLE:
            self.open()
        if self.events is not None:
            source = iter(self.events)
        else:
            source = self._iter_stream()
        return self._deliver(source)

    def _deliver(self, source):
        try:
            for event in source:
                if self._cancel.is_set():
                    return
                if event.kind == 'error':
                    log.warning('changes stream %s: %s', self.ref, event.reason)
                if event.kind == 'done':
                    if self._finish(COMPLETED):
                        log.info('changes stream %s done at %s',
                            self.ref, dumps(event.last_seq)
                        )
                    yield event
                    return
                yield event
            self._finish(COMPLETED)
        finally:
            self.close()

    def _iter_stream(self):
        parser = ChangesParser()
        response = self.response
        if response is None:
            return
        try:
            for data in iter_chunks(response.body):
                if self._cancel.is_set():
                    return
                yield from parser.feed(data)
            yield from parser.flush()
        except Exception:
            if self._cancel.is_set():
                return
            self._finish(FAILED)
            raise
        log.warning('changes stream %s ended without last_seq', self.ref)

    def start(self):
        """
        Consume the stream in a background thread.

        Returns a queue to drain with ``queue.get()``.  Events arrive in order,
        None marks the end of the stream, and an exception raised while
        streaming is raised from ``queue.get()``.  The worker stays at most
        one event ahead of the consumer; after `ChangesStream.cancel()`,
        ``queue.get()`` returns None.
        """
        self.queue = ChangesQueue(self)
        self.thread = _start_thread(_stream_worker, self, self.queue)
        return self.queue


def follow(db, **options):
    """
    Return an opened `ChangesStream` on the `settee.Database` *db*.
    """
    return ChangesStream(db, **options).open()


def follow_once(db, **options):
    """
    Make one non-continuous changes request on *db*, returning its stream.
    """
    return ChangesStream(db, once=True, **options).open()


def fold(db, fun, acc, **options):
    """
    Fold each change into *acc* using *fun*, returning the final *acc*.

    *fun* is called like this for every `Change` in a one-shot feed::

        acc = fun(change, acc)

    """
    if not callable(fun):
        raise TypeError("fun isn't a callable")

    with follow_once(db, **options) as stream:
        for event in stream:
            if event.kind == 'change':
                acc = fun(event, acc)
    return acc


def foreach(db, fun, **options):
    """Call *fun* with each change in a one-shot feed."""

    if not callable(fun):
        raise TypeError("fun isn't a callable")

    with follow_once(db, **options) as stream:
        for event in stream:
            if event.kind == 'change':
                fun(event)
