"""Rooter exception hierarchy.

RouterError covers mistakes in how the router was set up or fed.
HttpError is the throwable HTTP status: raising it aborts the request.
"""

import contextlib
from dataclasses import dataclass, field


class RouterError(Exception):
    """Base for all rooter-specific errors."""


class InvalidCallableError(RouterError, ValueError):
    """A handler reference is malformed or names nothing callable.

    Raised when the reference is resolved, i.e. at dispatch time.
    """


class InvalidPatternError(RouterError, ValueError):
    """A regex route pattern does not compile."""


@dataclass(kw_only=True)
class HttpError(Exception):
    """Throwable HTTP Error. Raising one ends the request with its status."""
    code: int = field(kw_only=False, default=500)
    short: str | None = field(kw_only=False, default=None)
    desc: str | None = None
    headers: dict[str, str] = field(default_factory=dict)  # type:ignore

    def default_headers(self) -> dict[str, str]: return {}
    def all_headers(self): return self.default_headers() | self.headers
    def has_cause(self): return self.__cause__ is not None

    def exc_info(self):
        """Get the exception info tuple if this error was raised from an exception."""
        if self.has_cause():
            return (type(self.__cause__), self.__cause__, self.__traceback__)
        return (type(self), self, self.__traceback__)

    def causes(self):
        cause = self.__cause__
        seen = []  # circular reference prevention
        while cause:
            if cause in seen:
                break
            yield cause
            seen.append(cause)
            cause = cause.__cause__

    @classmethod
    @contextlib.contextmanager
    def wrap_exceptions(cls, *args, **kwargs):
        try:
            yield
        except HttpError as ex:
            raise ex
        except Exception as ex:
            raise cls(*args, **kwargs) from ex


@dataclass(kw_only=True)
class NotFound(HttpError):
    code: int = field(kw_only=False, default=404)


def abort(code: int = 500, short: str | None = None, **kwargs):
    """Stop handling the current request with the given HTTP status."""
    raise HttpError(code, short, **kwargs)
