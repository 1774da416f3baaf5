"""
Route tree for matching request URLs against scope URIs.

Each scope owns one (method, URI pattern) pair. The tree stores URI patterns
segment by segment, so that a concrete request URL can be matched against
every registered pattern in one walk:

    /foo/*          GET     -> scope 0
    /foo/bar/baz    GET     -> scope 1
    /foo/bar/*      GET     -> scope 2

    root
    └── "foo"
        ├── *            GET  (0)
        └── "bar"
            ├── "baz"    GET  (1)
            └── *        GET  (2)

A segment is a wildcard if it is empty, "*" or a named parameter (":id").
All three are stored the same way and, when they carry the requested method,
match the remainder of the URL no matter how deep it goes. `GET /foo/bar/baz`
above matches all three scopes; `GET /foo/bar/bleh` matches 0 and 2.

Slow when many patterns share a prefix, since every matching branch is
followed: `/foo/*/baz`, `/foo/bar/*` and `/foo/*` all match `/foo/bar/baz`.
"""

from enum import IntFlag


class Method(IntFlag):
    """Bit for each HTTP method a tree node can be registered for."""

    GET = 1 << 0
    HEAD = 1 << 1
    POST = 1 << 2
    PUT = 1 << 3
    DELETE = 1 << 4
    CONNECT = 1 << 5
    OPTIONS = 1 << 6
    TRACE = 1 << 7
    PATCH = 1 << 8


def method_bit(method: str) -> int:
    """Return the bit for an upper-case HTTP method, or 0 if it is unknown."""
    member = Method.__members__.get(method)
    return member.value if member is not None else 0


def split_uri(uri: str) -> list[str]:
    """
    Split a URI into its path segments.

    Slashes are trimmed from both ends first, then the query string is
    dropped, so "/foo/?q=1" becomes ["foo", ""] (trailing wildcard).
    """
    path = uri.strip("/").split("?", 1)[0]
    return path.split("/")


def is_wildcard(segment: str) -> bool:
    return segment == "" or segment == "*" or segment.startswith(":")


class _Node:
    """One path segment in the tree. `segment` is None for wildcards."""

    __slots__ = ("children", "methods", "scope", "segment")

    def __init__(self, segment: str | None = None) -> None:
        self.segment = segment
        self.children: list[_Node] = []
        self.methods = 0
        self.scope: int | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.segment is None

    def has_method(self, method: str) -> bool:
        return self.methods & method_bit(method) != 0


class ScopeRouteTree:
    """
    Maps (method, URI pattern) registrations to scope indices.

    The tree is mutated only while it is being built; once handed over to
    the registry it is treated as frozen and read concurrently.

    Usage::

        tree = ScopeRouteTree()
        tree.add_route("GET", "/users/:id", 0)
        tree.get_matching_scopes("GET", "/users/42")   # [0]
    """

    __slots__ = ("_root",)

    def __init__(self) -> None:
        self._root = _Node()

    def add_route(self, method: str, uri: str, scope: int) -> None:
        """Register `scope` for `method` on the URI pattern."""
        node = self._root
        segments = split_uri(uri)
        last = len(segments) - 1

        for idx, raw in enumerate(segments):
            segment = raw.strip()
            wildcard = is_wildcard(segment)
            child = self._reuse_child(node, segment, wildcard, scope, idx == last)
            if child is None:
                child = self._append_child(node, None if wildcard else segment)
            node = child

        node.scope = scope
        node.methods |= method_bit(method)

    @staticmethod
    def _reuse_child(
        node: _Node, segment: str, wildcard: bool, scope: int, is_final: bool
    ) -> _Node | None:
        # A shared prefix is walked freely, but a terminal node is only
        # reused for the same scope ending on the same segment.
        for child in node.children:
            if (wildcard and child.is_wildcard) or (
                not child.is_wildcard and child.segment == segment
            ):
                if child.scope is None or (child.scope == scope and is_final):
                    return child
        return None

    @staticmethod
    def _append_child(node: _Node, segment: str | None) -> _Node:
        child = _Node(segment)
        node.children.append(child)
        return child

    def get_matching_scopes(self, method: str, url: str) -> list[int]:
        """
        Return every scope whose pattern matches the URL for this method.

        The result is de-duplicated and ordered by discovery. Overlapping
        patterns are all reported; there is no precedence between them.
        """
        found: dict[int, None] = {}
        candidates = [self._root]

        for segment in split_uri(url):
            next_candidates = []
            for candidate in candidates:
                for child in candidate.children:
                    if child.is_wildcard and child.has_method(method):
                        found[child.scope] = None
                    elif child.is_wildcard or child.segment == segment:
                        next_candidates.append(child)
            candidates = next_candidates

        for candidate in candidates:
            if candidate.has_method(method) and candidate.scope is not None:
                found[candidate.scope] = None

        return list(found)
