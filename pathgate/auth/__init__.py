from .easy_auth import (
    audit_route,
    build_auth_config,
    callback_path,
    callback_url,
    effective_api_prefix,
    public_api_prefix,
)

__all__ = [
    "audit_route",
    "build_auth_config",
    "callback_path",
    "callback_url",
    "effective_api_prefix",
    "public_api_prefix",
]
