from .headers import (
    build_forward_headers,
    filter_response_headers,
    original_host_and_proto,
    public_origin,
)
from .redirects import (
    RedirectContext,
    is_redirect_loop,
    mount_path,
    normalize_location,
    normalize_set_cookie,
)

__all__ = [
    "build_forward_headers",
    "filter_response_headers",
    "original_host_and_proto",
    "public_origin",
    "RedirectContext",
    "is_redirect_loop",
    "mount_path",
    "normalize_location",
    "normalize_set_cookie",
]
