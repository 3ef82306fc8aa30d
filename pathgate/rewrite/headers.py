import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from pathgate import vars as gateway_vars
from pathgate.routing import HostPolicy, ProxyConvention, RouteMatch

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 7230), plus any proxy-*
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers that identify the original request for the backend
FORWARDED_HEADERS = {
    "forwarded",
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
    "x-forwarded-prefix",
    "x-real-ip",
}


def _is_hop_by_hop(name: str) -> bool:
    return name in HOP_BY_HOP_HEADERS or name.startswith("proxy-")


def _connection_tokens(headers: Mapping[str, str]) -> set:
    value = headers.get("connection", "")
    return {token.strip().lower() for token in value.split(",") if token.strip()}


def _first_value(value: str) -> str:
    return value.split(",", 1)[0].strip()


def original_host_and_proto(
    incoming: Mapping[str, str], scheme: str
) -> Tuple[str, str]:
    """Host and scheme the client used, honouring upstream proxies only when trusted."""
    host = incoming.get("host", "")
    proto = scheme
    if gateway_vars.TRUST_FORWARDED_HEADERS:
        forwarded_host = incoming.get("x-forwarded-host") or incoming.get(
            gateway_vars.ORIGINAL_HOST_HEADER.lower()
        )
        if forwarded_host:
            host = _first_value(forwarded_host)
        forwarded_proto = incoming.get("x-forwarded-proto")
        if forwarded_proto:
            proto = _first_value(forwarded_proto)
    return host, proto


def public_origin(incoming: Mapping[str, str], scheme: str) -> str:
    """Scheme and host the browser sees, e.g. https://www.contoso.com."""
    if gateway_vars.PUBLIC_URL:
        return gateway_vars.PUBLIC_URL
    host, proto = original_host_and_proto(incoming, scheme)
    return f"{proto}://{host}" if host else ""


def _host_for_backend(match: RouteMatch, original_host: str) -> str:
    rule = match.rule
    if rule.host_policy == HostPolicy.OVERRIDE:
        return rule.host_override
    if rule.host_policy == HostPolicy.PRESERVE and original_host:
        return original_host
    return rule.backend_netloc


def build_forward_headers(
    incoming: Mapping[str, str],
    match: RouteMatch,
    client_ip: Optional[str],
    scheme: str,
) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the matched backend.

    Removes hop-by-hop headers, applies the rule's Host policy and tells the
    backend which host, scheme and path prefix the client actually used.
    """
    incoming = {name.lower(): value for name, value in incoming.items()}
    rule = match.rule
    original_host, proto = original_host_and_proto(incoming, scheme)
    client_ip = client_ip or "unknown"

    forward_proxy = rule.auth.forward_proxy
    custom_names = set()
    if forward_proxy.convention == ProxyConvention.CUSTOM:
        custom_names.add(forward_proxy.custom_host_header_name.lower())
        if forward_proxy.custom_proto_header_name:
            custom_names.add(forward_proxy.custom_proto_header_name.lower())

    original_host_header = gateway_vars.ORIGINAL_HOST_HEADER.lower()
    dropped = HOP_BY_HOP_HEADERS | _connection_tokens(incoming) | {"host"}
    if not gateway_vars.TRUST_FORWARDED_HEADERS:
        # A client must not be able to pick the host the backend builds URLs from
        dropped |= FORWARDED_HEADERS | custom_names | {original_host_header}

    headers = {
        name: value
        for name, value in incoming.items()
        if name not in dropped and not _is_hop_by_hop(name)
    }

    headers["host"] = _host_for_backend(match, original_host)
    headers[original_host_header] = original_host

    existing_xff = headers.get("x-forwarded-for", "")
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
    headers["x-forwarded-host"] = original_host
    headers["x-forwarded-proto"] = proto
    headers["x-real-ip"] = client_ip
    if match.mount_prefix:
        headers["x-forwarded-prefix"] = match.mount_prefix
    else:
        headers.pop("x-forwarded-prefix", None)

    if forward_proxy.convention == ProxyConvention.CUSTOM:
        headers[forward_proxy.custom_host_header_name.lower()] = original_host
        if forward_proxy.custom_proto_header_name:
            headers[forward_proxy.custom_proto_header_name.lower()] = proto

    logger.debug(
        f"[Proxy] Host for {rule.name}: {original_host} -> {headers['host']} "
        f"({rule.host_policy.value})"
    )
    return headers


def filter_response_headers(
    headers: Iterable[Tuple[str, str]],
) -> List[Tuple[str, str]]:
    """Drop hop-by-hop headers from a backend response, keeping duplicates."""
    items = list(headers)
    connection = {}
    for name, value in items:
        if name.lower() == "connection":
            connection = {"connection": value}
    dropped = _connection_tokens(connection)
    return [
        (name, value)
        for name, value in items
        if not _is_hop_by_hop(name.lower()) and name.lower() not in dropped
    ]
