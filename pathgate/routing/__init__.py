from .rules import (
    AuthMode,
    AuthSettings,
    ForwardProxySettings,
    HostPolicy,
    ProxyConvention,
    RouteConfigError,
    RouteRule,
    RouteTable,
    get_route_table,
    load_route_table,
    load_route_table_from_env,
    set_route_table,
)
from .matcher import NoRouteMatchError, PathMatcher, RouteMatch, matcher_for, normalize_path

__all__ = [
    "AuthMode",
    "AuthSettings",
    "ForwardProxySettings",
    "HostPolicy",
    "ProxyConvention",
    "RouteConfigError",
    "RouteRule",
    "RouteTable",
    "get_route_table",
    "load_route_table",
    "load_route_table_from_env",
    "set_route_table",
    "NoRouteMatchError",
    "PathMatcher",
    "RouteMatch",
    "matcher_for",
    "normalize_path",
]
