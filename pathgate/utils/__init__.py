from typing import Dict, Mapping

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "proxy-authorization"}


def mask_token(text: str, token: str) -> str:
    return text.replace(token, f"{token[:4]}****") if token else text


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of headers that is safe to log."""
    return {
        name: mask_token(value, value) if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }
