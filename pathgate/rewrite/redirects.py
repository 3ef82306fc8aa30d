"""Keep redirects and identity provider callbacks on the public address.

A backend mounted under ``/app1`` behind the gateway believes it lives at
``https://app1.azurewebsites.net/``. Every URL it hands to the browser
(``Location`` headers, ``redirect_uri`` parameters sent to the identity
provider, cookie paths) has to be moved back onto the public host and under
the mount prefix, otherwise login ends on the backend hostname or loops.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional
from urllib.parse import quote, unquote_plus, urljoin, urlsplit, urlunsplit

from pathgate.routing import RouteMatch

logger = logging.getLogger("uvicorn.error")

# Query parameters through which a URL is handed to the identity provider
REDIRECT_PARAMS = (
    "redirect_uri",
    "post_login_redirect_uri",
    "post_login_redirect_url",
    "post_logout_redirect_uri",
)


@dataclass(frozen=True)
class RedirectContext:
    match: RouteMatch
    origin: str
    backend_request_path: str = "/"
    internal_hosts: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def for_match(
        cls, match: RouteMatch, origin: str, backend_request_path: Optional[str] = None
    ) -> "RedirectContext":
        return cls(
            match=match,
            origin=origin.rstrip("/"),
            backend_request_path=backend_request_path or match.backend_path,
            internal_hosts=frozenset(match.rule.internal_hosts()),
        )

    def is_internal(self, netloc: str, hostname: Optional[str]) -> bool:
        return netloc.lower() in self.internal_hosts or (
            hostname or ""
        ).lower() in self.internal_hosts


def _under(path: str, prefix: str, case_sensitive: bool = False) -> bool:
    if not case_sensitive:
        path, prefix = path.lower(), prefix.lower()
    return path == prefix or path.startswith(prefix + "/")


def mount_path(path: str, ctx: RedirectContext) -> str:
    """Translate a backend-side path into the path the client must request."""
    base = ctx.match.rule.backend_base_path
    case_sensitive = ctx.match.case_sensitive
    if base and _under(path, base, case_sensitive):
        path = path[len(base):] or "/"
    prefix = ctx.match.public_prefix
    if not prefix or _under(path, prefix, case_sensitive):
        return path
    return f"{prefix}{path}"


def _normalize_internal(location: str, ctx: RedirectContext) -> Optional[str]:
    """Rewrite a relative or backend-hosted URL; None when the URL is external."""
    parts = urlsplit(location)

    if not parts.netloc:
        if not parts.path.startswith("/"):
            # Relative to the current backend-side path
            parts = urlsplit(urljoin(ctx.backend_request_path, location))
        path = mount_path(parts.path or "/", ctx)
        return urlunsplit(("", "", path, parts.query, parts.fragment))

    if not ctx.is_internal(parts.netloc, parts.hostname):
        return None

    if not ctx.origin:
        logger.warning(
            f"[Redirect] No public origin known, leaving backend URL {location} as-is"
        )
        return location

    origin = urlsplit(ctx.origin)
    path = mount_path(parts.path or "/", ctx)
    return urlunsplit((origin.scheme, origin.netloc, path, parts.query, parts.fragment))


def _normalize_redirect_params(location: str, ctx: RedirectContext) -> str:
    parts = urlsplit(location)
    if not parts.query:
        return location
    changed = False
    segments = []
    # Only rewritten key=value segments are re-encoded, the rest stay byte-for-byte
    for segment in parts.query.split("&"):
        raw_key, sep, raw_value = segment.partition("=")
        key, value = unquote_plus(raw_key), unquote_plus(raw_value)
        if sep and key in REDIRECT_PARAMS and value:
            new_value = _normalize_internal(value, ctx)
            # Relative callbacks are meaningless at the IdP, make them absolute
            if new_value is not None and new_value.startswith("/") and ctx.origin:
                new_value = f"{ctx.origin}{new_value}"
            if new_value is not None and new_value != value:
                logger.info(f"[Redirect] {key}: {value} -> {new_value}")
                segment = f"{raw_key}={quote(new_value, safe='')}"
                changed = True
        segments.append(segment)
    if not changed:
        return location
    query = "&".join(segments)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def normalize_location(location: str, ctx: RedirectContext) -> str:
    """
    Rewrite a Location header emitted by the backend.

    Relative and backend-hosted URLs move under the public origin and mount
    prefix. URLs on other hosts (the identity provider) are kept, but the
    callback URLs they carry are normalized the same way.
    """
    if not location:
        return location
    try:
        internal = _normalize_internal(location, ctx)
        if internal is not None:
            return internal
        return _normalize_redirect_params(location, ctx)
    except ValueError as e:
        logger.warning(f"[Redirect] Unparsable Location {location!r} kept as-is: {e}")
        return location


def normalize_set_cookie(set_cookie: str, ctx: RedirectContext) -> str:
    """
    Move a Set-Cookie header onto the public address.

    ``Path=/`` becomes the mount prefix, other paths are mounted, and a
    ``Domain`` naming the backend host is dropped so the cookie binds to the
    host the browser actually talks to.
    """
    if not set_cookie:
        return set_cookie
    segments = [segment.strip() for segment in set_cookie.split(";")]
    cookie, attributes = segments[0], segments[1:]
    prefix = ctx.match.public_prefix
    result: List[str] = [cookie]
    for attribute in attributes:
        if not attribute:
            continue
        name, sep, value = attribute.partition("=")
        lowered = name.strip().lower()
        if lowered == "path" and sep:
            path = value.strip() or "/"
            if path == "/":
                attribute = f"Path={prefix or '/'}"
            else:
                attribute = f"Path={mount_path(path, ctx)}"
        elif lowered == "domain" and sep:
            domain = value.strip().lstrip(".").lower()
            if domain in ctx.internal_hosts:
                logger.debug(f"[Redirect] Dropping backend cookie domain {domain}")
                continue
        result.append(attribute)
    return "; ".join(result)


def is_redirect_loop(location: str, request_url: str) -> bool:
    """True when a redirect points back at the URL that produced it."""
    if not location or not request_url:
        return False
    try:
        target = urlsplit(location)
        current = urlsplit(request_url)
    except ValueError:
        return False
    if target.netloc and target.netloc.lower() != current.netloc.lower():
        return False
    return (target.path or "/") == (current.path or "/") and target.query == current.query
