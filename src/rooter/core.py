import contextlib
import dataclasses
import http
import io
import json
import logging
import re
import socketserver
import threading
import types
import wsgiref.handlers
import wsgiref.headers
import wsgiref.simple_server
import wsgiref.types
import urllib.parse
from dataclasses import InitVar, dataclass, field

from . import util
from .config import RouterConfig
from .errors import HttpError, InvalidPatternError, NotFound, RouterError
from .resolve import AnyCallable, CallableRef, CallableResolver, Invokable, as_callable_ref

import typing as t
_O = t.Optional
Headers = wsgiref.headers.Headers
_AnyHeaders: t.TypeAlias = dict[str, str] | list[tuple[str, str]] | Headers

logger = logging.getLogger("rooter")

WILDCARD = "*"
ALL_METHODS = ("GET", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "POST", "HEAD")
NO_REGEX = "no-regex"
UNSET: t.Any = object()  # mount() without a service keeps the enclosing one


@dataclass
class Request:
    environ: t.Mapping[str, t.Any]
    path: str
    method: str
    headers: Headers

    @classmethod
    def from_wsgi(cls, environ: wsgiref.types.WSGIEnvironment):
        hlist = [(k[5:].replace("_", "-").title(), v)
                 for k, v in environ.items() if k.startswith("HTTP_")]
        return cls(environ, environ.get('PATH_INFO', '/'),
                   environ['REQUEST_METHOD'], Headers(hlist))

    @property
    def server_params(self) -> t.Mapping[str, t.Any]:
        return self.environ

    @property
    def query_string(self) -> str:
        return self.environ.get("QUERY_STRING", "")

    @property
    def query_vars(self):
        return dict(urllib.parse.parse_qsl(self.query_string))

    def body_bytes(self) -> bytes:
        fp = self.environ.get('wsgi.input')
        return fp.read() if fp is not None else b''


@dataclass(kw_only=True)
class Response:
    """Status, headers, and a body that can be written to."""
    content: InitVar[str | bytes | None] = field(default=None, kw_only=False)
    code: int = 200
    content_type: InitVar[str | None] = None
    charset: str = 'utf-8'
    h: InitVar[_AnyHeaders | None] = None
    headers: Headers = field(init=False, default=None)  # type:ignore
    http_error: HttpError | None = None

    def __post_init__(self, content, content_type, h):
        self.headers = Headers(
            list(h.items()) if isinstance(h, dict) or isinstance(h, Headers)
            else h
        )
        self._body: list[bytes] = []
        if content_type:
            self.headers.setdefault('Content-Type', content_type)
        if content is not None:
            self.write(content)
        if self.http_error:
            self.code = self.http_error.code or self.code
            if content is None and self.http_error.desc:
                self.write(self.http_error.desc)
            for k, v in self.http_error.all_headers().items():
                self.headers.setdefault(k, v)

    def write(self, content: str | bytes):
        self._body.append(content if isinstance(content, bytes)
                          else content.encode(self.charset))

    def set_content(self, content: str | bytes):
        self._body = []
        self.write(content)

    @property
    def body(self) -> bytes:
        return b''.join(self._body)

    @property
    def text(self) -> str:
        return self.body.decode(self.charset)

    def _http_status(self) -> str:
        """Get the HTTP status text for the current response code."""
        if self.http_error and self.http_error.short:
            return self.http_error.short
        try:
            return http.HTTPStatus(self.code).phrase
        except ValueError:
            return "StatusPhraseUnknown"

    def _wsgi_start_response_args(self):
        """Get the args that will go to WSGI's start_response()."""
        status_line = f"{self.code} {self._http_status()}"
        if self.http_error and self.http_error.has_cause():
            return (status_line, self.headers.items(), self.http_error.exc_info())
        return (status_line, self.headers.items(), None)

    def _wsgi_response(self) -> t.Iterable[bytes]:
        return tuple(self._body)


@dataclass(kw_only=True)
class JsonResponse(Response):
    content: InitVar[t.Any] = field(default=None, kw_only=False)
    content_type: InitVar[str | None] = 'application/json'

    def __post_init__(self, content, content_type, h):
        super().__post_init__(
            None if content is None else json.dumps(content), content_type, h)


@t.runtime_checkable
class Handler(t.Protocol):
    def handle_request(self, request: Request) -> Response: ...


NextHandler: t.TypeAlias = Handler | t.Callable[[Request], Response]


def call_next(handler: NextHandler, request: Request | None) -> Response:
    if isinstance(handler, Handler):
        response = handler.handle_request(request)
    else:
        response = handler(request)
    if not isinstance(response, Response):
        raise RouterError(
            f"Next handler {handler!r} returned {type(response).__name__}, not a Response")
    return response


@dataclass
class WsgiHandler:
    """Present a WSGI application as the next handler in a chain."""
    app: wsgiref.types.WSGIApplication

    def handle_request(self, request: Request) -> Response:
        info = {}
        body: list[bytes] = []

        def start_response(status: str, headers: list[tuple[str, str]], exc_info=None):
            info.update(status=status, headers=headers)
            return body.append

        out = self.app(dict(request.environ), start_response)
        try:
            body.extend(out)
        finally:
            if close := getattr(out, "close", None):
                close()
        code, _, _ = info["status"].partition(" ")
        response = Response(code=int(code), h=list(info["headers"]))
        for chunk in body:
            response.write(chunk)
        return response


# Routing --------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class Route:
    method: str
    pattern: str  # as registered, scope prefix included
    handler: CallableRef
    options: t.Mapping[str, t.Any] = field(default_factory=dict)
    service: t.Any = None
    normalized: str | None = field(init=False, repr=False, compare=False)
    regex: re.Pattern[str] | None = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'options', types.MappingProxyType(dict(self.options)))
        normalized = util.normalize_pattern(self.pattern)
        object.__setattr__(self, 'normalized', normalized)
        regex = None
        if normalized is not None and not self.no_regex:
            try:
                regex = re.compile(util.anchor(normalized))
            except re.error as ex:
                raise InvalidPatternError(
                    f"Route {self.method} {self.pattern!r} is not a valid regex: {ex}") from ex
        object.__setattr__(self, 'regex', regex)

    @property
    def no_regex(self) -> bool:
        return bool(self.options.get(NO_REGEX))

    def match(self, path: str) -> "MatchResult | None":
        if self.normalized is None:
            return None
        if self.no_regex:
            return MatchResult(self, []) if self.normalized == path else None
        if match := t.cast(re.Pattern[str], self.regex).match(path):
            return MatchResult(self, util.match_groups(match))
        return None


@dataclass
class MatchResult:
    route: Route
    groups: list[str]  # whole match first; empty for literal routes

    @property
    def params(self) -> tuple[str, ...]:
        return tuple(self.groups[1:])


class RouteTable:
    """Routes by method, in registration order.

    Registering a pattern a second time for the same method replaces the
    handler but keeps the route's original position.
    """

    def __init__(self):
        self._routes: dict[str, dict[str, Route]] = {}

    def add(self, route: Route) -> None:
        self._routes.setdefault(route.method, {})[route.pattern] = route

    def routes(self, method: str | None = None) -> list[Route]:
        if method is not None:
            return list(self._routes.get(method, {}).values())
        return [r for bucket in self._routes.values() for r in bucket.values()]

    def methods(self) -> list[str]:
        return list(self._routes)

    def get_route_by_uri(self, method: str, path: str) -> MatchResult | None:
        bucket = self._routes.get(method)
        if bucket is None:
            return None
        for route in bucket.values():
            if match := route.match(path):
                return match
        return None


def _shorthand(*methods: str):
    def register(self, pattern: str, handler: _O[AnyCallable] = None,
                 options: _O[t.Mapping[str, t.Any]] = None, *, no_regex: bool = False):
        return self.route(methods, pattern, handler, options, no_regex=no_regex)
    register.__name__ = "_and_".join(methods).lower()
    register.__doc__ = f"Register a route for {' and '.join(methods)}."
    return register


class Registrar:
    """Route registration shared by a Router and the scopes it mounts."""
    table: RouteTable
    prefix: str
    service: t.Any

    def add_route(self, method: str, pattern: str, handler: AnyCallable,
                  options: _O[t.Mapping[str, t.Any]] = None, *,
                  no_regex: bool = False) -> Route:
        opts = dict(options or {})
        if no_regex:
            opts[NO_REGEX] = True
        route = Route(method.upper(), self.prefix + pattern,
                      as_callable_ref(handler), opts, self.service)
        self.table.add(route)
        logger.debug("Registered %s %s -> %r", route.method, route.pattern, handler)
        return route

    def route(self, method: str | t.Iterable[str], pattern: str,
              handler: _O[AnyCallable] = None,
              options: _O[t.Mapping[str, t.Any]] = None, *,
              no_regex: bool = False):
        """Register `handler` for one method, several, or "*" for all of them.

        Without a handler, returns a decorator that registers the decorated
        function and hands it back unchanged.
        """
        if handler is None:
            def decorator(fn):
                self.route(method, pattern, fn, options, no_regex=no_regex)
                return fn
            return decorator
        methods = ALL_METHODS if method == WILDCARD else util.as_list(method)
        for m in methods:
            self.add_route(m, pattern, handler, options, no_regex=no_regex)
        return self

    get = _shorthand("GET")
    post = _shorthand("POST")
    put = _shorthand("PUT")
    patch = _shorthand("PATCH")
    head = _shorthand("HEAD")
    delete = _shorthand("DELETE")
    options = _shorthand("OPTIONS")
    trace = _shorthand("TRACE")
    connect = _shorthand("CONNECT")
    get_and_post = _shorthand("GET", "POST")

    def mount(self, prefix: str, block: _O[t.Callable[["Scope"], t.Any]] = None,
              service: t.Any = UNSET):
        """Register a group of routes under a common prefix.

        `block` receives a Scope whose registrations carry `prefix` (and
        `service`, if given). The scope is a separate object, so leaving the
        block, normally or by exception, leaves this registrar untouched.
        Without a block the scope itself is returned.
        """
        scope = Scope(self.table, self.prefix + prefix,
                      self.service if service is UNSET else service)
        if block is None:
            return scope
        block(scope)
        return self

    def routes(self, method: str | None = None) -> list[Route]:
        return self.table.routes(method)


@dataclass
class Scope(Registrar):
    table: RouteTable
    prefix: str = ""
    service: t.Any = None


# Dispatch -------------------------------------------------------------------

@dataclass(eq=False)
class Context:
    """What a handler gets as its first argument."""
    method: str
    path: str
    request: Request | None = None
    next_handler: NextHandler | None = None
    route: Route | None = None
    params: tuple[str, ...] = ()
    out: t.TextIO | None = field(default=None, repr=False)
    _response: Response | None = field(default=None, init=False, repr=False)

    @property
    def service(self) -> t.Any:
        return self.route.service if self.route else None

    @property
    def options(self) -> t.Mapping[str, t.Any]:
        return self.route.options if self.route else types.MappingProxyType({})

    @property
    def chained(self) -> bool:
        return self.next_handler is not None

    def write(self, text: str) -> None:
        if self.out is None:
            raise RuntimeError("Output can only be written while the handler runs.")
        self.out.write(text)

    def response(self) -> Response | None:
        """The downstream response, fetched on first use; None standalone."""
        if self.next_handler is None:
            return None
        if self._response is None:
            self._response = call_next(self.next_handler, self.request)
        return self._response


@dataclass
class Capture:
    text: str = ""


# sys.stdout is process-wide, so redirected captures run one at a time
_stdout_lock = threading.RLock()


@contextlib.contextmanager
def captured_output(ctx: Context, capture_stdout: bool = False):
    """Give `ctx` a fresh output buffer for the length of the block.

    The buffer's contents land in the yielded Capture and the buffer is
    closed on the way out, whether or not the block raised.
    """
    buf = io.StringIO()
    capture = Capture()
    ctx.out = buf
    try:
        with contextlib.ExitStack() as stack:
            if capture_stdout:
                stack.enter_context(_stdout_lock)
                stack.enter_context(contextlib.redirect_stdout(buf))
            yield capture
    finally:
        capture.text = buf.getvalue()
        ctx.out = None
        buf.close()


def default_404(ctx: Context, method: str, path: str):
    """Built-in not-found handler.

    Standalone, it aborts the request with a bare 404. As a middleware link
    it marks the downstream response 404 and lets it through.
    """
    if ctx.chained:
        response = t.cast(Response, ctx.response())
        response.code = 404
        return response
    raise NotFound()


def _is_empty(value: t.Any) -> bool:
    """None and empty strings or containers. Zero and False are values."""
    return value is None or (isinstance(value, (str, bytes, list, tuple, dict, set))
                             and not value)


class Router(Registrar):
    """Ordered method + path router.

    Routes are tried in the order they were registered; the first whose
    pattern matches wins. Patterns are anchored regular expressions unless
    registered with `no_regex=True`, in which case they must equal the path.
    """

    def __init__(self, error: _O[AnyCallable] = None, base_namespace: str = "", *,
                 config: _O[RouterConfig] = None):
        config = config or RouterConfig()
        if base_namespace:
            config = dataclasses.replace(config, base_namespace=base_namespace)
        self.config = config
        self.table = RouteTable()
        self.prefix = ""
        self.service = None
        self.resolver = CallableResolver(config)
        self.error: CallableRef
        self.set_404(error)

    # Setup ---------------------------------------------------------------

    def set_service(self, service: t.Any) -> None:
        """Default service for routes registered from now on."""
        self.service = service

    def get_service(self) -> t.Any:
        return self.service

    def set_404(self, error: _O[AnyCallable] = None) -> None:
        """Handler invoked as (ctx, method, path) when no route matches."""
        self.error = as_callable_ref(error) if error else Invokable(default_404)

    # Request Handling ----------------------------------------------------

    def get_route_by_uri(self, method: str, path: str) -> MatchResult | None:
        return self.table.get_route_by_uri(method, path)

    def dispatch(self, method: str, path: str) -> t.Any:
        """Route `method` and `path` to a handler and return its output."""
        return self._dispatch(Context(method, path))

    def _dispatch(self, ctx: Context) -> t.Any:
        match = self.get_route_by_uri(ctx.method, ctx.path)
        if match is None:
            logger.debug("No route for %s %s", ctx.method, ctx.path)
            return self.call(ctx, self.error, (ctx.method, ctx.path))
        ctx.route = match.route
        logger.debug("%s %s matched %r", ctx.method, ctx.path, match.route.pattern)
        return self.call(ctx, match.route.handler, match.params)

    def call(self, ctx: Context, handler: CallableRef | AnyCallable,
             params: tuple[str, ...] = ()) -> t.Any:
        """Resolve and invoke a handler, then materialize what it produced."""
        target = self.resolver.resolve(handler)
        ctx.params = params
        with captured_output(ctx, self.config.capture_stdout) as capture:
            result = target(ctx, *params)
        return self.materialize(ctx, result, capture.text)

    def materialize(self, ctx: Context, result: t.Any, captured: str) -> t.Any:
        """Fold a handler's return value and captured output into the outcome.

        A non-empty return value beats captured output. Standalone, that raw
        value is the outcome. Chained, it is written into the downstream
        response unless it already is a Response.
        """
        value = (captured or "") if _is_empty(result) else result
        if not ctx.chained or isinstance(value, Response):
            return value
        response = t.cast(Response, ctx.response())
        if isinstance(value, (str, bytes)):
            content_type = self.config.default_content_type
        else:
            value, content_type = json.dumps(value), "application/json"
        response.write(value)
        if "Content-Type" not in response.headers:
            response.headers["Content-Type"] = content_type
        return response

    # Entry points --------------------------------------------------------

    def extract_page(self, request_uri: str, script_name: str = "") -> str:
        return util.extract_page(request_uri, script_name, self.config.strip_script_dir)

    def _path_from(self, params: t.Mapping[str, t.Any]) -> str:
        return self.extract_page(util.request_uri(params), params.get("SCRIPT_NAME", ""))

    def dispatch_global(self, environ: _O[t.Mapping[str, t.Any]] = None) -> t.Any:
        """Dispatch using the CGI variables of the process environment."""
        environ = wsgiref.handlers.read_environ() if environ is None else environ
        return self.dispatch(environ["REQUEST_METHOD"], self._path_from(environ))

    def process(self, request: Request, handler: NextHandler) -> Response:
        """Handle `request` as one link of a chain whose next link is `handler`."""
        params = request.server_params
        ctx = Context(params["REQUEST_METHOD"], self._path_from(params),
                      request=request, next_handler=handler)
        return self._as_response(self._dispatch(ctx))

    def _as_response(self, value: t.Any) -> Response:
        if isinstance(value, Response):
            return value
        if isinstance(value, (str, bytes)):
            return Response(value, content_type=self.config.default_content_type,
                            charset=self.config.charset)
        return JsonResponse(value, charset=self.config.charset)

    def wrap(self, app: wsgiref.types.WSGIApplication) -> wsgiref.types.WSGIApplication:
        """WSGI app running this router in front of `app`."""
        downstream = WsgiHandler(app)

        def middleware(environ, start_response):
            return self._wsgi_respond(environ, start_response, downstream)
        return middleware

    # Server Running ----------------------------------------------------

    def make_server(self, port=8080, host='', threaded=True):
        svr = wsgiref.simple_server.WSGIServer
        if threaded:  # Add threading mix-in
            svr = type('ThreadedServer', (socketserver.ThreadingMixIn, svr),
                       {'daemon_threads': True})
        return wsgiref.simple_server.make_server(host, port, self, server_class=svr)

    def serve_forever(self, port=8080, host='', threaded=True):
        print("Serving on %s:%s -- ctrl+c to quit." % (host, port))
        try:
            self.make_server(port, host, threaded).serve_forever()
        except KeyboardInterrupt:
            pass

    def serve_cgi(self):
        """Answer the single request described by the CGI environment."""
        wsgiref.handlers.CGIHandler().run(self)

    def __call__(self, environ, start_response):
        """WSGI entrypoint."""
        return self._wsgi_respond(environ, start_response, None)

    def _wsgi_respond(self, environ, start_response, downstream: _O[NextHandler]):
        request = Request.from_wsgi(environ)
        response = self._wsgi_get_response(request, downstream)
        start_response(*response._wsgi_start_response_args())
        return response._wsgi_response()

    def _wsgi_get_response(self, request: Request,
                           downstream: _O[NextHandler]) -> Response:
        """Dispatch with 100% error handling."""
        try:
            with HttpError.wrap_exceptions():
                if downstream is not None:
                    return self.process(request, downstream)
                return self._as_response(self._dispatch(
                    Context(request.method, self._path_from(request.environ),
                            request=request)))
        except HttpError as ex:
            if ex.has_cause():
                logger.exception("%d %s %s", ex.code, request.method, request.path)
            else:
                logger.debug("%d %s %s", ex.code, request.method, request.path)
            return Response(http_error=ex)
