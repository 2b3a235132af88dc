import typing as t
import urllib.parse

_T = t.TypeVar("_T")

# pylint: disable=missing-function-docstring

DELIMITER = "@"  # historical regex delimiter; escaped before compiling


def normalize_pattern(pattern: str) -> str | None:
    """Give a route pattern its canonical form, or None if it can never match.

    A leading "/" is added when missing and exactly one trailing "/" is
    removed, except from the bare root pattern.
    """
    if not pattern:
        return None
    if pattern[0] != "/":
        pattern = "/" + pattern
    if len(pattern) > 1 and pattern[-1] == "/":
        pattern = pattern[:-1]
    return pattern


def escape_delimiter(pattern: str) -> str:
    return pattern.replace(DELIMITER, "\\" + DELIMITER)


def anchor(pattern: str) -> str:
    return f"^{escape_delimiter(pattern)}$"


def extract_page(request_uri: str, script_name: str = "",
                 strip_script_dir: bool = False) -> str:
    """Turn a raw request URI into the path the router matches against.

    The URI is url-decoded, the query string is dropped, and leading and
    trailing slashes collapse into a single leading "/". With
    `strip_script_dir`, as many characters as the script's directory
    (including its trailing "/") occupy are cut from the front first.
    """
    url = urllib.parse.unquote_plus(request_uri)
    url, _, _ = url.partition("?")
    if strip_script_dir:
        script_dir = "/".join(script_name.split("/")[:-1]) + "/"
        url = url[len(script_dir):]
    return "/" + url.strip("/")


def request_uri(environ: t.Mapping[str, t.Any]) -> str:
    """Best available raw request URI from a WSGI/CGI environment."""
    for key in ("REQUEST_URI", "RAW_URI"):
        if uri := environ.get(key):
            return uri
    # PEP 3333: PATH_INFO carries the raw path bytes decoded as latin-1
    raw = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
    uri = urllib.parse.quote(raw.encode("latin-1"))
    if query := environ.get("QUERY_STRING"):
        uri = f"{uri}?{query}"
    return uri or "/"


def as_list(val: _T | t.Iterable[_T]) -> list[_T]:
    if isinstance(val, (str, bytes)):
        return [t.cast(_T, val)]
    return list(t.cast(t.Iterable[_T], val))


def match_groups(match) -> list[str]:
    """Groups of a match as a flat list, whole match first.

    Unmatched groups after the last matched one are omitted; unmatched
    groups before it read as "".
    """
    groups = [match.group(0), *match.groups()]
    while groups and groups[-1] is None:
        groups.pop()
    return ["" if g is None else g for g in groups]
