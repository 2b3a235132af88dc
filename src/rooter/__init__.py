"""Rooter is a small ordered request router for Python WSGI.

Register handlers against HTTP methods and path patterns (anchored regular
expressions, or literal strings), and rooter picks the first route that
matches, hands the captured groups to the handler, and turns whatever the
handler returned or wrote into a response.

It runs standalone, as a WSGI application or from the CGI environment, or
as one link in a chain, in front of another WSGI application whose response
it writes into.
"""

from .config import RouterConfig
from .core import (
    ALL_METHODS, NO_REGEX, WILDCARD, Context, Handler, Headers, JsonResponse,
    MatchResult, Request, Response, Route, Router, RouteTable, Scope, WsgiHandler,
    captured_output, default_404,
)
from .errors import (
    HttpError, InvalidCallableError, InvalidPatternError, NotFound, RouterError, abort,
)
from .resolve import ByName, ByNameAndMember, CallableResolver, Invokable
from .util import extract_page

__all__ = [
    "ALL_METHODS", "NO_REGEX", "WILDCARD",
    "ByName", "ByNameAndMember", "CallableResolver", "Context", "Handler",
    "Headers", "HttpError", "InvalidCallableError", "InvalidPatternError",
    "Invokable", "JsonResponse", "MatchResult", "NotFound", "Request", "Response",
    "Route", "RouteTable", "Router", "RouterConfig", "RouterError", "Scope",
    "WsgiHandler", "abort", "captured_output", "default_404", "extract_page",
]
