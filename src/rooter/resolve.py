"""Late-bound handler references.

A route may name its handler instead of holding it: "myapp.views.home",
("myapp.views.Users", "show"), or "@views.home" where "@" stands for the
router's base namespace. Names are turned into callables at dispatch time,
every time; nothing is cached here beyond what `importlib` caches itself.
"""

import importlib
import inspect
import typing as t
from dataclasses import dataclass

from .config import RouterConfig
from .errors import InvalidCallableError


@dataclass(frozen=True)
class ByName:
    name: str


@dataclass(frozen=True)
class ByNameAndMember:
    parts: tuple[t.Any, ...]

    @property
    def target(self) -> t.Any:
        return self.parts[0]

    @property
    def member(self) -> t.Any:
        return self.parts[1]


@dataclass(frozen=True)
class Invokable:
    fn: t.Any


CallableRef: t.TypeAlias = ByName | ByNameAndMember | Invokable
AnyCallable: t.TypeAlias = str | tuple[str, str] | list[str] | t.Callable[..., t.Any]


def as_callable_ref(handler: t.Any) -> CallableRef:
    """Tag a raw handler value. Never fails; validation happens on resolve."""
    if isinstance(handler, (ByName, ByNameAndMember, Invokable)):
        return handler
    if isinstance(handler, str):
        return ByName(handler)
    if isinstance(handler, (tuple, list)):
        return ByNameAndMember(tuple(handler))
    return Invokable(handler)


class CallableResolver:
    """Turn a CallableRef into something you can call with the route params."""

    def __init__(self, config: RouterConfig):
        self.config = config

    def qualify(self, name: str) -> str:
        """Apply alias substitution and separator conversion to a name.

        With base namespace "app", "@foo.bar" becomes "app.foo.bar".
        """
        if not isinstance(name, str) or not name:
            raise InvalidCallableError(
                "Route/error callable as string must not be empty.")
        cfg = self.config
        if name[0] == cfg.alias_marker:
            base = cfg.base_namespace
            name = f"{base}.{name[1:]}" if base else name[1:]
        return name.replace(cfg.name_separator, ".")

    def resolve(self, ref: CallableRef | AnyCallable) -> t.Callable[..., t.Any]:
        ref = as_callable_ref(ref)
        match ref:
            case ByName(name):
                return self._check(self.lookup(self.qualify(name)), name)
            case ByNameAndMember(parts):
                if len(parts) != 2 or not all(isinstance(p, str) and p for p in parts):
                    raise InvalidCallableError(
                        "Route/error callable as pair must contain exactly two "
                        f"non-empty strings, got {parts!r}.")
                target = self.lookup(self.qualify(ref.target))
                if inspect.isclass(target):
                    target = target()
                try:
                    return self._check(getattr(target, ref.member), parts)
                except AttributeError as ex:
                    raise InvalidCallableError(
                        f"{ref.target!r} has no member {ref.member!r}") from ex
            case Invokable(fn):
                return self._check(fn, fn)
        raise InvalidCallableError(f"Unsupported callable reference {ref!r}")

    def lookup(self, qualified: str) -> t.Any:
        """Import the longest module prefix of a dotted name, then getattr the rest.

        "pkg.mod:attr.sub" pins the module/attribute boundary explicitly.
        """
        if ":" in qualified:
            module_name, _, attr_path = qualified.partition(":")
            obj = self._import(module_name)
            return self._getattrs(obj, attr_path.split("."), qualified)

        parts = qualified.split(".")
        for i in range(len(parts), 0, -1):
            module_name = ".".join(parts[:i])
            try:
                obj = self._import(module_name)
            except InvalidCallableError:
                continue
            return self._getattrs(obj, parts[i:], qualified)
        raise InvalidCallableError(f"Cannot import any module for {qualified!r}")

    @staticmethod
    def _import(module_name: str):
        try:
            return importlib.import_module(module_name)
        except ModuleNotFoundError as ex:
            # only "this module doesn't exist"; a broken import inside it propagates
            if ex.name and module_name != ex.name and not module_name.startswith(ex.name + "."):
                raise
            raise InvalidCallableError(f"No module named {module_name!r}") from ex
        except ValueError as ex:  # empty or relative module names
            raise InvalidCallableError(f"Invalid module name {module_name!r}") from ex

    @staticmethod
    def _getattrs(obj: t.Any, attrs: list[str], qualified: str) -> t.Any:
        for attr in attrs:
            try:
                obj = getattr(obj, attr)
            except AttributeError as ex:
                raise InvalidCallableError(
                    f"Cannot resolve {qualified!r}: no attribute {attr!r}") from ex
        return obj

    @staticmethod
    def _check(fn: t.Any, source: t.Any) -> t.Callable[..., t.Any]:
        if not callable(fn):
            raise InvalidCallableError(f"{source!r} does not name a callable")
        return fn
