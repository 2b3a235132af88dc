"""Router configuration.

RouterConfig is a frozen dataclass: build one up front, hand it to the
Router, and it never changes underneath a running application.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RouterConfig:
    """Router configuration. Immutable after creation.

    Override only what you need::

        config = RouterConfig(base_namespace="myapp.views", capture_stdout=True)
    """

    # Handler names
    base_namespace: str = ""  # substituted for alias_marker, e.g. "@home" -> "myapp.views.home"
    alias_marker: str = "@"
    name_separator: str = "."

    # Paths
    strip_script_dir: bool = False  # legacy: cut the script's directory off the request URI

    # Materialization
    default_content_type: str = "text/html"
    charset: str = "utf-8"
    # Treat print() inside a handler as output. sys.stdout is global, so
    # handlers that capture it are serialized across threads.
    capture_stdout: bool = False
