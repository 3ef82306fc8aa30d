import logging
import posixpath
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from pathgate.routing.rules import (
    WILDCARD_SUFFIX,
    RouteRule,
    RouteTable,
    pattern_prefix,
)

logger = logging.getLogger("uvicorn.error")

# Path characters a URL carries literally; '?', '#' and '%' must be escaped
PATH_SAFE_CHARS = "/:@!$&'()*+,;=-._~"


class NoRouteMatchError(LookupError):
    """Raised when no rule (and no default rule) accepts a path."""

    def __init__(self, path: str):
        super().__init__(f"No route matches path {path!r}")
        self.path = path


@dataclass(frozen=True)
class RouteMatch:
    rule: RouteRule
    pattern: str
    mount_prefix: str
    backend_path: str
    is_default: bool = False
    case_sensitive: bool = False

    @property
    def backend_url(self) -> str:
        """Backend origin plus the escaped backend path (base path included)."""
        parts = urlsplit(self.rule.backend)
        path = quote(self.backend_path, safe=PATH_SAFE_CHARS)
        return urlunsplit((parts.scheme, parts.netloc, path, "", ""))

    @property
    def public_prefix(self) -> str:
        """Prefix the client sees in front of paths the backend emits."""
        return self.mount_prefix if self.rule.strip_prefix else ""


def normalize_path(path: str) -> str:
    """Canonical form of a request path used for matching.

    Duplicate slashes collapse and dot segments are resolved without ever
    climbing above the root. A trailing slash survives.
    """
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    trailing = path.endswith("/") or path.endswith("/.") or path.endswith("/..")
    # A leading '//' is kept by posixpath.normpath, so squash it first
    normalized = posixpath.normpath("/" + path.lstrip("/"))
    if trailing and normalized != "/":
        normalized += "/"
    return normalized


class PathMatcher:
    """Resolves request paths against a route table.

    Exact patterns win over wildcard patterns, the longest wildcard prefix
    wins among wildcards and ties go to the rule defined first.
    """

    def __init__(self, table: RouteTable):
        self.table = table
        self._exact: List[Tuple[str, str, RouteRule]] = []
        self._wildcards: List[Tuple[str, str, RouteRule]] = []
        for rule in table.rules:
            for pattern in rule.paths:
                key = self._fold(pattern_prefix(pattern))
                if pattern.endswith(WILDCARD_SUFFIX):
                    self._wildcards.append((key, pattern, rule))
                else:
                    self._exact.append((key or "/", pattern, rule))
        # sorted() is stable, so definition order breaks ties
        self._wildcards = sorted(self._wildcards, key=lambda item: -len(item[0]))

    def _fold(self, value: str) -> str:
        return value if self.table.case_sensitive else value.lower()

    def match(self, path: str) -> RouteMatch:
        normalized = normalize_path(path)
        folded = self._fold(normalized)
        exact_key = folded.rstrip("/") or "/"

        for key, pattern, rule in self._exact:
            if key == exact_key:
                return self._build(rule, pattern, normalized)

        for key, pattern, rule in self._wildcards:
            if not key or folded == key or folded.startswith(key + "/"):
                return self._build(rule, pattern, normalized)

        default = self.table.default_rule
        if default is not None:
            logger.debug(f"[Routes] {normalized} -> default rule {default.name}")
            return RouteMatch(
                rule=default,
                pattern=WILDCARD_SUFFIX,
                mount_prefix="",
                backend_path=_join_backend_path(default, normalized),
                is_default=True,
                case_sensitive=self.table.case_sensitive,
            )
        raise NoRouteMatchError(normalized)

    def _build(self, rule: RouteRule, pattern: str, normalized: str) -> RouteMatch:
        mount_prefix = normalized[: len(pattern_prefix(pattern))]
        if rule.strip_prefix:
            remainder = normalized[len(mount_prefix):] or "/"
        else:
            remainder = normalized
        logger.debug(f"[Routes] {normalized} -> {rule.name} via {pattern}")
        return RouteMatch(
            rule=rule,
            pattern=pattern,
            mount_prefix=mount_prefix,
            backend_path=_join_backend_path(rule, remainder),
            case_sensitive=self.table.case_sensitive,
        )


def _join_backend_path(rule: RouteRule, path: str) -> str:
    return rule.backend_base_path + path


_matcher_cache: Optional[Tuple[RouteTable, PathMatcher]] = None


def matcher_for(table: RouteTable) -> PathMatcher:
    """Reuse a PathMatcher as long as the same table object is active."""
    global _matcher_cache
    if _matcher_cache is None or _matcher_cache[0] is not table:
        _matcher_cache = (table, PathMatcher(table))
    return _matcher_cache[1]
