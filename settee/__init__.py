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
`settee` - a lightweight Couch client with revision tracking.

Settee makes HTTP requests to a CouchDB-style REST API.  The `CouchBase` class
gives you the raw verbs (`CouchBase.get()`, `CouchBase.put()`, etc) for any
part of the API, current or future.  On top of that, `Server` and `Database`
add the operations you need over and over:

    * database lifecycle (create, delete, exists, info, compact)

    * document CRUD where every mutating call carries a revision, with the
      revision looked up for you when an attachment write omits it

    * attachment upload, download and delete

    * view queries, with rows normalized by `settee.normalize`

    * changes feeds, one-shot or continuous, via `settee.changes`

    * server-side replication requests

Nothing here retries on a `Conflict`; only the caller knows whether re-reading
and re-applying a change is safe.
"""

from io import BufferedReader
import os
from base64 import b64encode
import json
import time
from urllib.parse import urlparse, urlencode, quote, ParseResult
import ssl
import threading
from queue import Queue
import platform
from collections import namedtuple
import logging

from degu.client import Client, SSLClient, build_client_sslctx

from .normalize import normalize


__all__ = (
    'Server',
    'Database',
    'Attachment',

    'AuthRequired',
    'DatabaseExists',
    'MalformedResponse',

    'BadRequest',
    'Unauthorized',
    'Forbidden',
    'NotFound',
    'MethodNotAllowed',
    'NotAcceptable',
    'Conflict',
    'PreconditionFailed',
    'BadContentType',
    'BadRangeRequest',
    'ExpectationFailed',

    'ServerError',
)

__version__ = '26.10.0'
log = logging.getLogger()
USER_AGENT = 'Settee/{} ({} {}; {})'.format(__version__,
    platform.system(), platform.release(), platform.machine()
)

HTTP_IPv4_URL = 'http://127.0.0.1:5984/'
HTTPS_IPv4_URL = 'https://127.0.0.1:6984/'
HTTP_IPv6_URL = 'http://[::1]:5984/'
HTTPS_IPv6_URL = 'https://[::1]:6984/'
URL_CONSTANTS = (
    HTTP_IPv4_URL,
    HTTPS_IPv4_URL,
    HTTP_IPv6_URL,
    HTTPS_IPv6_URL,
)
DEFAULT_URL = HTTP_IPv4_URL

Attachment = namedtuple('Attachment', 'content_type data')
RETRY_METHODS = frozenset(['GET', 'HEAD'])


def create_client(url, **options):
    """
    Convenience function to create a `degu.client.Client` from a URL.

    For example:

    >>> create_client('http://www.example.com/')
    Client(('www.example.com', 80))

    """
    t = (url if isinstance(url, ParseResult) else urlparse(url))
    if t.scheme != 'http':
        raise ValueError("scheme must be 'http', got {!r}".format(t.scheme))
    port = (80 if t.port is None else t.port)
    return Client((t.hostname, port), **options)


def create_sslclient(sslctx, url, **options):
    """
    Convenience function to create an `SSLClient` from a URL.
    """
    t = (url if isinstance(url, ParseResult) else urlparse(url))
    if t.scheme != 'https':
        raise ValueError("scheme must be 'https', got {!r}".format(t.scheme))
    port = (443 if t.port is None else t.port)
    return SSLClient(sslctx, (t.hostname, port), **options)


class AuthRequired(Exception):
    """
    Raised when an operation needs a credential the handle doesn't have.

    No request is made to the server when this is raised.
    """

    def __init__(self, what):
        self.what = what
        super().__init__('{} requires a credential'.format(what))


class DatabaseExists(Exception):
    """
    Raised by `Server.create_db()` when the database already exists.
    """

    def __init__(self, name):
        self.name = name
        super().__init__('database already exists: {!r}'.format(name))


class MalformedResponse(Exception):
    """
    Raised when a response body doesn't have the shape an operation expects.
    """

    def __init__(self, msg, obj=None):
        self.obj = obj
        super().__init__(msg)


class HTTPError(Exception):
    """
    Base class for exceptions raised based on HTTP response status.
    """

    def __init__(self, response, method, url):
        self.response = response
        self.data = (b'' if response.body is None else response.body.read())
        self.method = method
        self.url = url
        super().__init__()

    def __str__(self):
        return '{} {}: {} {}'.format(
            self.response.status, self.response.reason, self.method, self.url
        )


class ClientError(HTTPError):
    """
    Base class for all 4xx Client Error exceptions.
    """


class BadRequest(ClientError):
    '400 Bad Request'

class Unauthorized(ClientError):
    '401 Unauthorized'

class Forbidden(ClientError):
    '403 Forbidden'

class NotFound(ClientError):
    '404 Not Found'

class MethodNotAllowed(ClientError):
    '405 Method Not Allowed'

class NotAcceptable(ClientError):
    '406 Not Acceptable'

class Conflict(ClientError):
    '409 Conflict'

class Gone(ClientError):
    '410 Gone'

class LengthRequired(ClientError):
    '411 Length Required'

class PreconditionFailed(ClientError):
    '412 Precondition Failed'

class BadContentType(ClientError):
    '415 Unsupported Media Type'

class BadRangeRequest(ClientError):
    '416 Requested Range Not Satisfiable'

class ExpectationFailed(ClientError):
    '417 Expectation Failed'

class EnhanceYourCalm(ClientError):
    '420 Enhance Your Calm'


class ServerError(HTTPError):
    """
    Used to raise exceptions for any 5xx Server Errors.
    """


errors = {
    400: BadRequest,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    405: MethodNotAllowed,
    406: NotAcceptable,
    409: Conflict,
    410: Gone,
    411: LengthRequired,
    412: PreconditionFailed,
    415: BadContentType,
    416: BadRangeRequest,
    417: ExpectationFailed,
    420: EnhanceYourCalm,
}


def check_response(response, method, path):
    """
    Return *response*, or raise the `HTTPError` matching its status.
    """
    if response.status >= 500:
        raise ServerError(response, method, path)
    if response.status >= 400:
        E = errors.get(response.status, ClientError)
        raise E(response, method, path)
    return response


def dumps(obj, pretty=False):
    """
    Safe and opinionated use of ``json.dumps()``.

    This function always calls ``json.dumps()`` with *ensure_ascii=False* and
    *sort_keys=True*.

    For example:

    >>> doc = {
    ...     'hello': 'мир',
    ...     'welcome': 'все',
    ... }
    >>> dumps(doc)
    '{"hello":"мир","welcome":"все"}'

    By default compact encoding is used, but if you supply *pretty=True*,
    4-space indentation will be used:

    >>> print(dumps(doc, pretty=True))
    {
        "hello": "мир",
        "welcome": "все"
    }

    """
    if pretty:
        return json.dumps(obj,
            ensure_ascii=False,
            sort_keys=True,
            separators=(',',': '),
            indent=4,
        )
    return json.dumps(obj,
        ensure_ascii=False,
        sort_keys=True,
        separators=(',',':'),
    )


def loads(data, what='response'):
    """
    Decode JSON *data*, raising `MalformedResponse` when it can't be decoded.

    For example:

    >>> loads(b'{"ok":true}')
    {'ok': True}

    """
    try:
        return json.loads(data.decode())
    except ValueError as e:
        raise MalformedResponse(
            'cannot decode {}: {}'.format(what, e), data
        ) from e


def _json_body(obj):
    if obj is None:
        return None
    if isinstance(obj, (bytes, BufferedReader)):
        return obj
    return dumps(obj).encode()


def docid_parts(doc_id):
    """
    Return the URL path components for *doc_id*.

    The ID is escaped as a single path component, except that the slash after
    a ``_design`` or ``_local`` prefix is kept:

    >>> docid_parts('foo bar')
    ('foo%20bar',)
    >>> docid_parts('a/b')
    ('a%2Fb',)
    >>> docid_parts('_design/app')
    ('_design', 'app')

    """
    for prefix in ('_design/', '_local/'):
        if doc_id.startswith(prefix):
            return (prefix[:-1], quote(doc_id[len(prefix):], safe=''))
    return (quote(doc_id, safe=''),)


def _queryiter(options):
    """
    Return appropriately encoded (key, value) pairs sorted by key.

    We JSON encode the value if the key is "key", "startkey", or "endkey", or
    if the value is not an ``str``.
    """
    for key in sorted(options):
        value = options[key]
        if key in ('key', 'startkey', 'endkey') or not isinstance(value, str):
            value = json.dumps(value, sort_keys=True, separators=(',',':'))
        yield (key, value)


def basic_auth_header(basic):
    b = '{username}:{password}'.format(**basic).encode()
    return 'Basic ' + b64encode(b).decode()


def _basic_auth_header(basic):
    return {'authorization': basic_auth_header(basic)}


REPLICATION_KW = frozenset([
    'cancel',
    'continuous',
    'create_target',
    'doc_ids',
    'filter',
    'proxy',
    'query_params',
])


def replication_body(source, target, **kw):
    """
    Build the object to POST to ``/_replicate``.

    For example:

    >>> replication_body('a', 'b', create_target=True)
    {'source': 'a', 'target': 'b', 'create_target': True}

    """
    if not REPLICATION_KW.issuperset(kw):
        raise TypeError('unknown replication options: {!r}'.format(
            sorted(set(kw) - REPLICATION_KW))
        )
    body = {
        'source': source,
        'target': target,
    }
    body.update(kw)
    return body


def replication_peer(name, env):
    peer =  {'url': env['url'] + name}
    if env.get('basic'):
        peer['headers'] = _basic_auth_header(env['basic'])
    return peer


def push_replication(local_db, remote_db, remote_env, **kw):
    """
    Build the object to POST for push replication.
    """
    source = local_db
    target = replication_peer(remote_db, remote_env)
    return replication_body(source, target, **kw)


def pull_replication(local_db, remote_db, remote_env, **kw):
    """
    Build the object to POST for pull replication.
    """
    source = replication_peer(remote_db, remote_env)
    target = local_db
    return replication_body(source, target, **kw)


def _start_thread(target, *args):
    thread = threading.Thread(target=target, args=args)
    thread.daemon = True
    thread.start()
    return thread


class SmartQueue(Queue):
    """
    Queue with custom get() that raises exception instances from the queue.
    """

    def get(self, block=True, timeout=None):
        item = super().get(block, timeout)
        if isinstance(item, Exception):
            raise item
        return item


def build_ssl_context(config):
    if 'context' in config:
        ctx = config['context']
        assert isinstance(ctx, ssl.SSLContext)
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        return ctx
    return build_client_sslctx(config)


class Context:
    """
    Reuse TCP connections between multiple `CouchBase` instances.

    Individual `Server` and `Database` instances automatically do this: each
    thread gets its own thread-local connection that will transparently be
    reused.  Handles created with `Server.database()` share the `Context` of
    the `Server` they came from.

    A `Context` also carries a second client, `Context.stream_client`, that
    has no socket timeout.  A continuous changes feed connects with it so
    that long idle windows between heartbeats aren't treated as errors.
    """

    __slots__ = (
        'env', 'basepath', 't', 'url', 'threadlocal', 'client', 'stream_client',
    )

    def __init__(self, env=None):
        if env is None:
            env = DEFAULT_URL
        if not isinstance(env, (dict, str)):
            raise TypeError(
                'env must be a `dict` or `str`; got {!r}'.format(env)
            )
        self.env = ({'url': env} if isinstance(env, str) else env)
        url = self.env.get('url', DEFAULT_URL)
        t = urlparse(url)
        if t.scheme not in ('http', 'https'):
            raise ValueError(
                'url scheme must be http or https; got {!r}'.format(url)
            )
        if not t.netloc:
            raise ValueError('bad url: {!r}'.format(url))
        self.basepath = (t.path if t.path.endswith('/') else t.path + '/')
        self.t = t
        self.url = self.full_url(self.basepath)
        self.threadlocal = threading.local()
        if t.scheme == 'https':
            sslconfig = self.env.get('ssl', {})
            sslctx = build_ssl_context(sslconfig)
            self.client = create_sslclient(sslctx, self.t)
            self.stream_client = create_sslclient(sslctx, self.t, timeout=None)
        else:
            self.client = create_client(self.t)
            self.stream_client = create_client(self.t, timeout=None)

    def full_url(self, path):
        return ''.join([self.t.scheme, '://', self.t.netloc, path])

    def get_threadlocal_connection(self):
        conn = getattr(self.threadlocal, 'connection', None)
        if conn is None or conn.closed:
            conn = self.client.connect()
            self.threadlocal.connection = conn
        return conn


class CouchBase(object):
    """
    Base class for `Server` and `Database`.

    To simplify things, there are some assumptions we can make:

        * Request bodies are empty or JSON, except when you PUT an attachment

        * Response bodies are JSON, except when you GET an attachment

    With just 7 methods you can access the entire CouchDB API:

        * `CouchBase.post()`
        * `CouchBase.put()`
        * `CouchBase.get()`
        * `CouchBase.delete()`
        * `CouchBase.head()`
        * `CouchBase.put_att()`
        * `CouchBase.get_att()`

    The optional *basic* credential (a ``dict`` with "username" and "password")
    overrides ``env['basic']`` for this instance only.
    """

    def __init__(self, env=None, ctx=None, basic=None):
        self.ctx = (Context(env) if ctx is None else ctx)
        self.env = self.ctx.env
        self.basepath = self.ctx.basepath
        self.url = self.ctx.url
        self.basic = (self.env.get('basic') if basic is None else basic)

    def require_credential(self, what):
        if not self.basic:
            raise AuthRequired(what)

    def build_request(self, method, parts, options, headers=None):
        """
        Return the ``(path, headers)`` for a request.
        """
        h = {'user-agent': USER_AGENT}
        if headers:
            h.update(headers)
        if self.basic:
            h.update(_basic_auth_header(self.basic))
        path = (self.basepath + '/'.join(parts) if parts else self.basepath)
        if options:
            path = '?'.join([path, urlencode(tuple(_queryiter(options)))])
        return (path, h)

    def raw_request(self, method, path, body, headers):
        conn = self.ctx.get_threadlocal_connection()

        # Let an open file be used as an attachment body:
        if isinstance(body, BufferedReader):
            if 'content-length' in headers:
                content_length = headers['content-length']
            else:
                content_length = os.stat(body.fileno()).st_size
            body = conn.bodies.Body(body, content_length)

        # GET and HEAD are retried once in case the connection was closed by
        # the server; anything else may already have reached it:
        try:
            return conn.request(method, path, headers, body)
        except ConnectionError:
            if method not in RETRY_METHODS:
                raise
        conn = self.ctx.get_threadlocal_connection()
        return conn.request(method, path, headers, body)

    def request(self, method, parts, options, body=None, headers=None):
        (path, h) = self.build_request(method, parts, options, headers)
        response = self.raw_request(method, path, body, h)
        return check_response(response, method, path)

    def recv_json(self, method, parts, options, body=None, headers=None):
        if headers is None:
            headers = {}
        headers['accept'] = 'application/json'
        response = self.request(method, parts, options, body, headers)
        data = (b'' if response.body is None else response.body.read())
        return loads(data, '{} response'.format(method))

    def post(self, obj, *parts, **options):
        """
        POST *obj*.

        For example, to create a doc with a server-assigned ID in the
        database "foo":

        >>> cb = CouchBase()
        >>> cb.post({'hello': 'world'}, 'foo')  #doctest: +SKIP
        {'rev': '1-967a00dff5e02add41819138abb3284d', 'ok': True, 'id': '...'}

        """
        return self.recv_json('POST', parts, options, _json_body(obj),
            {'content-type': 'application/json'}
        )

    def put(self, obj, *parts, **options):
        """
        PUT *obj*.

        For example, to create the database "foo":

        >>> cb = CouchBase()
        >>> cb.put(None, 'foo')  #doctest: +SKIP
        {'ok': True}

        """
        return self.recv_json('PUT', parts, options, _json_body(obj),
            {'content-type': 'application/json'}
        )

    def get(self, *parts, **options):
        """
        Make a GET request.

        For example, to request the doc "bar" from the database "foo":

        >>> cb = CouchBase()
        >>> cb.get('foo', 'bar')  #doctest: +SKIP
        {'_rev': '1-967a00dff5e02add41819138abb3284d', '_id': 'bar'}
        """
        return self.recv_json('GET', parts, options)

    def delete(self, *parts, **options):
        """
        Make a DELETE request.

        >>> cb = CouchBase()
        >>> cb.delete('foo', 'bar', rev='1-fae0708c46b4a6c9c497c3a687170ad6')  #doctest: +SKIP
        {'rev': '2-18995243f0ebd1066fcb191a28d1222a', 'ok': True, 'id': 'bar'}

        """
        return self.recv_json('DELETE', parts, options)

    def head(self, *parts, **options):
        """
        Make a HEAD request.

        Returns a ``dict`` containing the response headers from the HEAD
        request.
        """
        response = self.request('HEAD', parts, options)
        return response.headers

    def put_att(self, mime, data, *parts, **options):
        """
        PUT an attachment.

        :param mime: The Content-Type, eg ``'image/jpeg'``
        :param data: a ``bytes`` instance or an open file
        :param parts: path components to construct URL relative to base path
        :param options: optional keyword arguments to include in query
        """
        return self.recv_json('PUT', parts, options, data,
            {'content-type': mime}
        )

    def get_att(self, *parts, **options):
        """
        GET an attachment.

        Returns an `Attachment` with the Content-Type and raw data.  The body
        is never decoded as JSON.
        """
        response = self.request('GET', parts, options)
        content_type = response.headers.get('content-type')
        data = (b'' if response.body is None else response.body.read())
        return Attachment(content_type, data)


class Server(CouchBase):
    """
    All the `CouchBase` methods plus server-level operations.

    For example:

    >>> s = Server('http://localhost:5984/')
    >>> s
    Server('http://localhost:5984/')
    >>> s.url
    'http://localhost:5984/'
    >>> s.basepath
    '/'

    """

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.url)

    def info(self):
        """
        GET the server welcome info.
        """
        return self.get()

    def active_tasks(self):
        self.require_credential('_active_tasks')
        return self.get('_active_tasks')

    def all_dbs(self):
        self.require_credential('_all_dbs')
        return self.get('_all_dbs')

    def uuids(self, count=1):
        """
        Return a list of *count* server-generated UUIDs.
        """
        return self.get('_uuids', count=count)['uuids']

    def uuid(self):
        return self.uuids()[0]

    def database(self, name, ensure=False, basic=None):
        """
        Create a `Database` with the same `Context` as this `Server`.

        If *basic* is provided, it overrides this server's credential for the
        returned `Database`.
        """
        db = Database(name, ctx=self.ctx,
            basic=(self.basic if basic is None else basic)
        )
        if ensure:
            db.ensure()
        return db

    def create_db(self, name, basic=None):
        """
        Create the database *name* and return a `Database` for it.

        Raises `DatabaseExists` if the database already exists.
        """
        db = self.database(name, basic=basic)
        try:
            db.put(None)
        except PreconditionFailed:
            raise DatabaseExists(name)
        return db

    def delete_db(self, name):
        """
        Delete the database *name*, returning True.

        Raises `NotFound` if the database doesn't exist.
        """
        return self.database(name).delete_db()

    def db_exists(self, name):
        return self.database(name).exists()

    def replicate(self, source, target, **kw):
        """
        POST a replication request to ``/_replicate``.

        For a normal replication the result is the completed replication
        summary, including its "history".  When *continuous* is True, the
        result only acknowledges that the replication was submitted; it says
        nothing about completion.
        """
        obj = replication_body(source, target, **kw)
        return self.post(obj, '_replicate')

    def push(self, local_db, remote_db, remote_env, **kw):
        obj = push_replication(local_db, remote_db, remote_env, **kw)
        return self.post(obj, '_replicate')

    def pull(self, local_db, remote_db, remote_env, **kw):
        obj = pull_replication(local_db, remote_db, remote_env, **kw)
        return self.post(obj, '_replicate')


class Database(CouchBase):
    """
    All the `CouchBase` methods plus database and document operations.

    For example:

    >>> db = Database('dmedia', 'http://localhost:5984/')
    >>> db
    Database('dmedia', 'http://localhost:5984/')
    >>> db.name
    'dmedia'
    >>> db.basepath
    '/dmedia/'

    Every mutating document operation needs the document's current revision.
    `Database.put_attachment()` and `Database.delete_attachment()` will look it
    up for you with `Database.resolve_rev()` when you leave it out;
    `Database.delete_doc()` never will.
    """

    def __init__(self, name, env=None, ctx=None, basic=None):
        super().__init__(env, ctx, basic)
        self.name = name
        self.basepath += (name + '/')

    def __repr__(self):
        return '{}({!r}, {!r})'.format(
            self.__class__.__name__, self.name, self.url
        )

    def server(self):
        """
        Create a `Server` with the same `Context` as this `Database`.
        """
        return Server(ctx=self.ctx, basic=self.basic)

    def database(self, name):
        """
        Create a `Database` with the same `Context` as this `Database`.
        """
        return Database(name, ctx=self.ctx, basic=self.basic)

    def info(self):
        return self.get()

    def exists(self):
        try:
            self.head()
            return True
        except NotFound:
            return False

    def ensure(self):
        """
        Ensure the database exists.

        This method will attempt to create the database, and will handle the
        `PreconditionFailed` exception raised if the database already exists.
        Returns True if the database was created.
        """
        try:
            self.put(None)
            return True
        except PreconditionFailed:
            return False

    def delete_db(self):
        """
        Delete this database, returning True.

        Raises `NotFound` if the database doesn't exist.
        """
        r = self.delete()
        if r != {'ok': True}:
            raise MalformedResponse(
                'unexpected response deleting {!r}: {!r}'.format(self.name, r), r
            )
        return True

    def compact(self, synchronous=False):
        log.info('compacting %r', self)
        self.post(None, '_compact')
        if synchronous:
            self.wait_for_compact()

    def wait_for_compact(self):
        if not self.get()['compact_running']:
            return
        start = time.monotonic()
        time.sleep(1)
        while self.get()['compact_running']:
            log.info('waiting compact to finish: %r', self)
            time.sleep(1)
        delta = time.monotonic() - start
        log.info('%.3f to compact %r', delta, self)

    def save_doc(self, doc):
        """
        Save *doc*, updating its _id and _rev in place.

        For example:

        >>> db = Database('foo')
        >>> db.save_doc({'_id': 'bar'})  #doctest: +SKIP
        {'_id': 'bar', '_rev': '1-967a00dff5e02add41819138abb3284d'}

        When *doc* has an _id, it's PUT to that ID, and must carry the current
        _rev if the doc already exists, else `Conflict` is raised.  When *doc*
        has no _id, it's POSTed and the server assigns one.

        Returns *doc*.
        """
        if '_id' in doc:
            r = self.put(doc, *docid_parts(doc['_id']))
        else:
            r = self.post(doc)
        try:
            (_id, _rev) = (r['id'], r['rev'])
        except (KeyError, TypeError):
            raise MalformedResponse(
                'no id and rev in save response: {!r}'.format(r), r
            )
        doc['_id'] = _id
        doc['_rev'] = _rev
        return doc

    def open_doc(self, doc_id, rev=None, **options):
        """
        GET the doc *doc_id*, optionally at revision *rev*.

        Raises `NotFound` if either the doc or the revision is unknown.
        """
        if rev is not None:
            options['rev'] = rev
        return normalize(self.get(*docid_parts(doc_id), **options))

    def doc_exists(self, doc_id):
        try:
            self.head(*docid_parts(doc_id))
            return True
        except NotFound:
            return False

    def delete_doc(self, doc_id, rev):
        """
        Delete the doc *doc_id* at its current revision *rev*.

        The revision is required and is never looked up for you.
        """
        if rev is None:
            raise TypeError(
                'delete_doc() needs the current rev of {!r}'.format(doc_id)
            )
        return self.delete(*docid_parts(doc_id), rev=rev)

    def lookup_doc_rev(self, doc_id):
        """
        Return the current revision of the doc *doc_id*.

        This makes a single HEAD request and reads the revision from the ETag
        header.  Raises `NotFound` if the doc doesn't exist.
        """
        headers = self.head(*docid_parts(doc_id))
        etag = headers.get('etag')
        if not etag:
            raise MalformedResponse(
                'no ETag in HEAD response for {!r}'.format(doc_id), headers
            )
        return etag.strip('"')

    def resolve_rev(self, doc_id, rev=None):
        """
        Return the revision to use when mutating the doc *doc_id*.

        If *rev* is provided it's returned unchanged and no request is made.
        Otherwise the current revision is fetched with `lookup_doc_rev()`.

        Another writer can update the doc between this lookup and your write,
        in which case the write will raise `Conflict`.  If you need the write
        to be atomic, pass the revision you read yourself, or retry on
        `Conflict`.
        """
        if rev is not None:
            return rev
        rev = self.lookup_doc_rev(doc_id)
        log.debug('resolved %s/%s to rev %s', self.name, doc_id, rev)
        return rev

    def put_attachment(self, doc_id, name, attachment, rev=None):
        """
        PUT *attachment* as *name* on the doc *doc_id*.

        Every attachment write creates a new revision of the doc.  If *rev* is
        None, the current revision is looked up first.

        :param attachment: an `Attachment` namedtuple; its data can be
            ``bytes`` or an open file
        """
        (content_type, data) = attachment
        rev = self.resolve_rev(doc_id, rev)
        return self.put_att(content_type, data,
            *docid_parts(doc_id), quote(name), rev=rev
        )

    def fetch_attachment(self, doc_id, name):
        """
        Return the raw ``bytes`` of the attachment *name* on doc *doc_id*.
        """
        return self.get_att(*docid_parts(doc_id), quote(name)).data

    def delete_attachment(self, doc_id, name, rev=None):
        """
        Delete the attachment *name* from the doc *doc_id*.

        This still creates a new revision when the attachment is already gone.
        If *rev* is None, the current revision is looked up first.
        """
        rev = self.resolve_rev(doc_id, rev)
        return self.delete(*docid_parts(doc_id), quote(name), rev=rev)

    def all_docs(self, include_docs=True, **options):
        options['include_docs'] = include_docs
        result = self.get('_all_docs', **options)
        return [normalize(row) for row in _rows(result)]

    def fetch_view(self, design, view, **options):
        """
        Return the rows from the view *view* in design doc *design*.

        The *options* are passed to the query string unchanged.  If *keys* is
        among them, the request is a POST with the keys in the body.  This:

            ``Database.fetch_view(design, view, **options)``

        Is a shortcut for:

            ``Database.get('_design', design, '_view', view, **options)['rows']``
        """
        parts = ('_design', design, '_view', view)
        if 'keys' in options:
            obj = {'keys': options.pop('keys')}
            result = self.post(obj, *parts, **options)
        else:
            result = self.get(*parts, **options)
        return _rows(result)

    def fetch_view_values(self, design, view, **options):
        rows = self.fetch_view(design, view, **options)
        return [normalize(row) for row in rows]

    def fetch_view_docs(self, design, view, **options):
        """
        Like `Database.fetch_view_values()`, but always with include_docs.
        """
        options['include_docs'] = True
        return self.fetch_view_values(design, view, **options)

    def follow(self, **options):
        """
        Open a `settee.changes.ChangesStream` on this database.

        Use ``continuous=True`` to keep the feed open; add ``heartbeat=True``
        (or a number of milliseconds) to have the server send heartbeats.
        """
        from .changes import follow
        return follow(self, **options)

    def follow_once(self, **options):
        """
        Make one changes request and return its events as a stream.
        """
        from .changes import follow_once
        return follow_once(self, **options)


def _rows(result):
    try:
        rows = result['rows']
    except (KeyError, TypeError):
        raise MalformedResponse('no rows in response: {!r}'.format(result), result)
    if not isinstance(rows, list):
        raise MalformedResponse('rows is not a list: {!r}'.format(rows), result)
    return rows
