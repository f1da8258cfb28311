"""Story graph assembly and traversal helpers."""

from bookquest.graph.resolver import (
    build_port_map,
    find_unresolved,
    inject_hub_back_connections,
    resolve_connections,
)

__all__ = [
    "build_port_map",
    "find_unresolved",
    "inject_hub_back_connections",
    "resolve_connections",
]
