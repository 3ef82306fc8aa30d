"""Authentication settings derived from a route rule.

App Service authentication builds its login callback from the host and path
it receives. Behind the gateway both differ from what the browser sees, so
every authenticated rule needs a matching ``auth.json`` (Easy Auth) or a
backend that honours the forwarded headers (custom authentication).
"""

import logging
from typing import Any, Dict, List, Optional

from pathgate import vars as gateway_vars
from pathgate.routing import AuthMode, HostPolicy, ProxyConvention, RouteRule
from pathgate.routing.rules import DEFAULT_API_PREFIX

logger = logging.getLogger("uvicorn.error")

# Provider names as used by globalValidation.redirectToProvider
PROVIDER_NAMES = {
    "aad": "azureactivedirectory",
    "microsoft": "microsoftaccount",
    "google": "google",
    "facebook": "facebook",
    "twitter": "twitter",
    "github": "github",
    "apple": "apple",
}


def primary_mount_prefix(rule: RouteRule) -> str:
    return rule.mount_prefixes[0]


def effective_api_prefix(rule: RouteRule) -> str:
    """The auth API prefix as the backend sees it."""
    if rule.auth.api_prefix:
        return rule.auth.api_prefix
    if rule.strip_prefix:
        return DEFAULT_API_PREFIX
    return f"{primary_mount_prefix(rule)}{DEFAULT_API_PREFIX}"


def public_api_prefix(rule: RouteRule) -> str:
    """The auth API prefix as the browser sees it."""
    api_prefix = effective_api_prefix(rule)
    if rule.strip_prefix:
        return f"{primary_mount_prefix(rule)}{api_prefix}"
    return api_prefix


def callback_path(rule: RouteRule, provider: Optional[str] = None) -> str:
    provider = provider or rule.auth.provider
    return f"{public_api_prefix(rule)}/login/{provider}/callback"


def callback_url(rule: RouteRule, origin: str, provider: Optional[str] = None) -> str:
    """Absolute redirect URI to register with the identity provider."""
    return f"{origin.rstrip('/')}{callback_path(rule, provider)}"


def _forward_proxy_section(rule: RouteRule) -> Dict[str, Any]:
    forward_proxy = rule.auth.forward_proxy
    section: Dict[str, Any] = {"convention": forward_proxy.convention.value}
    if forward_proxy.convention == ProxyConvention.CUSTOM:
        section["customHostHeaderName"] = forward_proxy.custom_host_header_name
        if forward_proxy.custom_proto_header_name:
            section["customProtoHeaderName"] = forward_proxy.custom_proto_header_name
    return section


def build_auth_config(rule: RouteRule, origin: Optional[str] = None) -> Dict[str, Any]:
    """
    Recommended authentication settings for the backend behind ``rule``.

    For Easy Auth this is an ``auth.json`` fragment. For custom code-based
    authentication it lists the headers the application has to trust when it
    builds its own callback URLs.

    Raises:
        LookupError: the rule has no authentication configured.
    """
    mode = rule.auth.mode
    if mode == AuthMode.NONE:
        raise LookupError(f"Rule {rule.name!r} has no authentication configured")

    if mode == AuthMode.CUSTOM:
        forward_proxy = rule.auth.forward_proxy
        host_header = gateway_vars.ORIGINAL_HOST_HEADER
        if forward_proxy.convention == ProxyConvention.CUSTOM:
            host_header = forward_proxy.custom_host_header_name
        hint: Dict[str, Any] = {
            "mode": "custom",
            "trustedHeaders": {
                "host": host_header,
                "proto": forward_proxy.custom_proto_header_name
                or "X-Forwarded-Proto",
                "prefix": "X-Forwarded-Prefix",
            },
            "mountPrefix": primary_mount_prefix(rule),
            "callbackPath": callback_path(rule),
        }
        if origin:
            hint["callbackUrl"] = callback_url(rule, origin)
        return hint

    config: Dict[str, Any] = {
        "platform": {"enabled": True},
        "globalValidation": {
            "requireAuthentication": True,
            "unauthenticatedClientAction": "RedirectToLoginPage",
            "redirectToProvider": PROVIDER_NAMES.get(
                rule.auth.provider, rule.auth.provider
            ),
        },
        "httpSettings": {
            "requireHttps": True,
            "routes": {"apiPrefix": effective_api_prefix(rule)},
            "forwardProxy": _forward_proxy_section(rule),
        },
    }
    if origin:
        config["login"] = {"allowedExternalRedirectUrls": [origin.rstrip("/")]}
    return config


def audit_route(rule: RouteRule) -> List[str]:
    """Warnings for rule settings that are known to break sign-in."""
    warnings: List[str] = []
    auth = rule.auth
    if auth.mode == AuthMode.NONE:
        return warnings

    backend_host = (rule.backend_netloc.split(":", 1)[0]).lower()
    if (
        rule.host_policy == HostPolicy.PRESERVE
        and backend_host.endswith(".azurewebsites.net")
    ):
        warnings.append(
            "Host is preserved but the backend is a default *.azurewebsites.net "
            "address; App Service only accepts hosts bound as custom domains."
        )

    if auth.mode == AuthMode.EASY_AUTH:
        if (
            rule.host_policy != HostPolicy.PRESERVE
            and auth.forward_proxy.convention == ProxyConvention.NO_PROXY
        ):
            warnings.append(
                "The Host header is rewritten but forwardProxy convention is NoProxy; "
                "Easy Auth will build callback URLs on the backend hostname. Use "
                "'Standard' or 'Custom'."
            )
        if rule.strip_prefix and len(rule.paths) > 1:
            warnings.append(
                f"Rule has several paths; login callbacks only return through "
                f"{primary_mount_prefix(rule) or '/'}."
            )
    elif auth.mode == AuthMode.CUSTOM and primary_mount_prefix(rule):
        warnings.append(
            "The application must build callback URLs from X-Forwarded-Prefix "
            "and the forwarded host, or register the public callback explicitly."
        )

    for warning in warnings:
        logger.debug(f"[Auth] {rule.name}: {warning}")
    return warnings
