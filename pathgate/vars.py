import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "pathgate")

# Route table source: a JSON file wins over inline JSON
ROUTES_FILE = os.environ.get("ROUTES_FILE", "")
ROUTES_JSON = os.environ.get("ROUTES_JSON", "")

# Public-facing URL used when rewriting redirects, e.g. https://www.contoso.com
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")
PROXY_TIMEOUT = int(os.environ.get("PROXY_TIMEOUT", "300"))

# Header carrying the host the client asked for (Application Gateway default)
ORIGINAL_HOST_HEADER = os.environ.get("ORIGINAL_HOST_HEADER", "X-Original-Host")
TRUST_FORWARDED_HEADERS = (
    os.environ.get("TRUST_FORWARDED_HEADERS", "false").lower() == "true"
)

GATEWAY_ADMIN_PREFIX = os.environ.get("GATEWAY_ADMIN_PREFIX", "/.gateway").rstrip("/")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
