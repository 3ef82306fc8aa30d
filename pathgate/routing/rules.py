"""Route table configuration.

A route table is a list of path rules, each pointing at one backend, in the
shape of an Application Gateway URL path map::

    {
        "default_rule": {"name": "web", "paths": ["/*"], "backend": "https://web.azurewebsites.net"},
        "rules": [
            {
                "name": "app1",
                "paths": ["/app1/*"],
                "backend": "https://app1.azurewebsites.net",
                "host_policy": "backend",
                "auth": {"mode": "easy_auth", "forward_proxy": {"convention": "Standard"}}
            }
        ]
    }
"""

import json
import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from pathgate import vars as gateway_vars

logger = logging.getLogger("uvicorn.error")

WILDCARD_SUFFIX = "/*"
DEFAULT_API_PREFIX = "/.auth"


class RouteConfigError(ValueError):
    """Raised when a route table cannot be loaded or is inconsistent."""


class HostPolicy(str, Enum):
    PRESERVE = "preserve"
    BACKEND = "backend"
    OVERRIDE = "override"


class AuthMode(str, Enum):
    NONE = "none"
    EASY_AUTH = "easy_auth"
    CUSTOM = "custom"


class ProxyConvention(str, Enum):
    NO_PROXY = "NoProxy"
    STANDARD = "Standard"
    CUSTOM = "Custom"


class ForwardProxySettings(BaseModel):
    convention: ProxyConvention = ProxyConvention.NO_PROXY
    custom_host_header_name: Optional[str] = None
    custom_proto_header_name: Optional[str] = None

    @model_validator(mode="after")
    def _custom_needs_host_header(self):
        if self.convention == ProxyConvention.CUSTOM and not self.custom_host_header_name:
            raise ValueError(
                "forward_proxy convention 'Custom' requires custom_host_header_name"
            )
        return self


class AuthSettings(BaseModel):
    mode: AuthMode = AuthMode.NONE
    api_prefix: Optional[str] = None
    provider: str = "aad"
    forward_proxy: ForwardProxySettings = Field(default_factory=ForwardProxySettings)

    @field_validator("api_prefix")
    @classmethod
    def _api_prefix_is_absolute(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not value.startswith("/"):
            raise ValueError(f"api_prefix must start with '/': {value!r}")
        return value.rstrip("/") or "/"


def normalize_pattern(pattern: str) -> str:
    """Validate a path pattern and return its canonical form."""
    if not pattern or not pattern.startswith("/"):
        raise ValueError(f"path pattern must start with '/': {pattern!r}")
    if "*" in pattern:
        if not pattern.endswith(WILDCARD_SUFFIX) or pattern.count("*") > 1:
            raise ValueError(
                f"'*' is only allowed as a trailing '/*' segment: {pattern!r}"
            )
        base = pattern[: -len(WILDCARD_SUFFIX)].rstrip("/")
        return f"{base}{WILDCARD_SUFFIX}"
    return pattern.rstrip("/") or "/"


def pattern_prefix(pattern: str) -> str:
    """Mount prefix of a pattern: '/app1/*' -> '/app1', '/*' -> ''."""
    if pattern.endswith(WILDCARD_SUFFIX):
        return pattern[: -len(WILDCARD_SUFFIX)]
    return "" if pattern == "/" else pattern


class RouteRule(BaseModel):
    name: str
    paths: List[str] = Field(min_length=1)
    backend: str
    host_policy: HostPolicy = HostPolicy.BACKEND
    host_override: Optional[str] = None
    strip_prefix: bool = True
    auth: AuthSettings = Field(default_factory=AuthSettings)

    @field_validator("paths")
    @classmethod
    def _normalize_paths(cls, value: List[str]) -> List[str]:
        return [normalize_pattern(p) for p in value]

    @field_validator("backend")
    @classmethod
    def _backend_is_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"backend must be an absolute http(s) URL: {value!r}")
        return value.rstrip("/")

    @model_validator(mode="after")
    def _check_host_policy(self):
        if self.host_policy == HostPolicy.OVERRIDE and not self.host_override:
            raise ValueError(
                f"rule {self.name!r}: host_policy 'override' requires host_override"
            )
        if self.host_override and self.host_policy != HostPolicy.OVERRIDE:
            raise ValueError(
                f"rule {self.name!r}: host_override is only valid with host_policy 'override'"
            )
        return self

    @property
    def backend_netloc(self) -> str:
        return urlparse(self.backend).netloc

    @property
    def backend_base_path(self) -> str:
        return urlparse(self.backend).path.rstrip("/")

    @property
    def mount_prefixes(self) -> List[str]:
        return [pattern_prefix(p) for p in self.paths]

    def internal_hosts(self) -> set:
        """Host names the backend may use when it builds absolute URLs."""
        hosts = {self.backend_netloc.lower(), urlparse(self.backend).hostname or ""}
        if self.host_override:
            hosts.add(self.host_override.lower())
            hosts.add(self.host_override.split(":", 1)[0].lower())
        hosts.discard("")
        return hosts


class RouteTable(BaseModel):
    rules: List[RouteRule] = Field(default_factory=list)
    default_rule: Optional[RouteRule] = None
    case_sensitive: bool = False

    @model_validator(mode="after")
    def _check_consistency(self):
        seen_names = set()
        seen_patterns: Dict[str, str] = {}
        all_rules = list(self.rules)
        if self.default_rule is not None:
            all_rules.append(self.default_rule)
        for rule in all_rules:
            if rule.name in seen_names:
                raise ValueError(f"duplicate rule name: {rule.name!r}")
            seen_names.add(rule.name)
        for rule in self.rules:
            for pattern in rule.paths:
                key = pattern if self.case_sensitive else pattern.lower()
                owner = seen_patterns.get(key)
                if owner is not None:
                    raise ValueError(
                        f"path {pattern!r} is claimed by both {owner!r} and {rule.name!r}"
                    )
                seen_patterns[key] = rule.name
        for rule in all_rules:
            _check_callback_reachable(rule)
        return self

    def get_rule(self, name: str) -> Optional[RouteRule]:
        for rule in self.all_rules():
            if rule.name == name:
                return rule
        return None

    def all_rules(self) -> List[RouteRule]:
        rules = list(self.rules)
        if self.default_rule is not None:
            rules.append(self.default_rule)
        return rules


def _check_callback_reachable(rule: RouteRule) -> None:
    # Without prefix stripping the backend sees the mounted path, so an explicit
    # Easy Auth apiPrefix has to live under every mount prefix.
    if rule.auth.mode != AuthMode.EASY_AUTH or rule.strip_prefix:
        return
    api_prefix = rule.auth.api_prefix
    if api_prefix is None:
        return
    for prefix in rule.mount_prefixes:
        if prefix and not (api_prefix == prefix or api_prefix.startswith(prefix + "/")):
            raise ValueError(
                f"rule {rule.name!r}: api_prefix {api_prefix!r} is outside mount prefix "
                f"{prefix!r}; login callbacks would not reach the backend"
            )


def load_route_table(raw: Mapping[str, Any]) -> RouteTable:
    try:
        return RouteTable.model_validate(raw)
    except ValidationError as e:
        raise RouteConfigError(f"Invalid route table: {e}") from e


def load_route_table_from_env() -> RouteTable:
    if gateway_vars.ROUTES_FILE:
        logger.info(f"[Routes] Loading route table from {gateway_vars.ROUTES_FILE}")
        try:
            with open(gateway_vars.ROUTES_FILE, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except OSError as e:
            raise RouteConfigError(
                f"Cannot read ROUTES_FILE {gateway_vars.ROUTES_FILE}: {e}"
            ) from e
        except json.JSONDecodeError as e:
            raise RouteConfigError(
                f"ROUTES_FILE {gateway_vars.ROUTES_FILE} is not valid JSON: {e}"
            ) from e
    elif gateway_vars.ROUTES_JSON:
        logger.info("[Routes] Loading route table from ROUTES_JSON")
        try:
            raw = json.loads(gateway_vars.ROUTES_JSON)
        except json.JSONDecodeError as e:
            raise RouteConfigError(f"ROUTES_JSON is not valid JSON: {e}") from e
    else:
        raise RouteConfigError("Neither ROUTES_FILE nor ROUTES_JSON is set")

    if not isinstance(raw, dict):
        raise RouteConfigError("Route table must be a JSON object")
    table = load_route_table(raw)
    logger.info(
        f"[Routes] Loaded {len(table.rules)} rule(s), default rule: "
        f"{table.default_rule.name if table.default_rule else None}"
    )
    return table


_table: Optional[RouteTable] = None
_table_lock = threading.Lock()


def get_route_table() -> RouteTable:
    global _table
    if _table is None:
        with _table_lock:
            if _table is None:
                _table = load_route_table_from_env()
    return _table


def set_route_table(table: Optional[RouteTable]) -> None:
    global _table
    with _table_lock:
        _table = table
