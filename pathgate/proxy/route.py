import logging
from typing import Iterable, List, Optional, Tuple

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from prometheus_client import Counter
from starlette.background import BackgroundTask

from pathgate import vars as gateway_vars
from pathgate.rewrite import (
    RedirectContext,
    build_forward_headers,
    filter_response_headers,
    is_redirect_loop,
    normalize_location,
    normalize_set_cookie,
    public_origin,
)
from pathgate.routing import NoRouteMatchError, RouteMatch, get_route_table, matcher_for
from pathgate.utils import mask_headers
from pathgate.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

PROXY_REQUESTS = Counter(
    "pathgate_proxy_requests_total",
    "Requests forwarded to a backend",
    ["route", "status"],
)
REDIRECTS_REWRITTEN = Counter(
    "pathgate_redirects_rewritten_total",
    "Location headers rewritten onto the public address",
    ["route"],
)

_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(gateway_vars.PROXY_TIMEOUT),
            follow_redirects=False,  # Redirects go back to the browser, rewritten
        )
    return _client


async def close_http_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def resolve_route(path: str) -> RouteMatch:
    """Match a request path, translating a miss into a 404."""
    try:
        return matcher_for(get_route_table()).match(path)
    except NoRouteMatchError as e:
        logger.info(f"[Proxy] {e}")
        raise HTTPException(status_code=404, detail="No route for this path")


def get_target_url(match: RouteMatch, query: str) -> str:
    url = match.backend_url
    if query:
        url = f"{url}?{query}"
    return url


def public_request_url(request: Request, origin: str) -> str:
    query = str(request.url.query)
    url = f"{origin}{request.url.path}"
    return f"{url}?{query}" if query else url


def rewrite_response_headers(
    items: Iterable[Tuple[str, str]], ctx: RedirectContext, request_url: str
) -> List[Tuple[str, str]]:
    """Filter backend response headers and move redirects and cookies onto the public address."""
    rewritten = []
    route_name = ctx.match.rule.name
    for name, value in filter_response_headers(items):
        name_lower = name.lower()
        if name_lower == "location":
            new_value = normalize_location(value, ctx)
            if new_value != value:
                REDIRECTS_REWRITTEN.labels(route=route_name).inc()
                logger.info(f"[Proxy] Location {value} -> {new_value}")
            if is_redirect_loop(new_value, request_url):
                logger.warning(
                    f"[Proxy] {route_name} redirects {request_url} to itself; "
                    f"check the Host policy and forwardProxy settings"
                )
            value = new_value
        elif name_lower == "set-cookie":
            value = normalize_set_cookie(value, ctx)
        rewritten.append((name, value))
    return rewritten


async def forward_to_target(request: Request) -> Response:
    """
    Forward an incoming request to the backend selected by the path map.

    The body is streamed back undecoded; Location and Set-Cookie headers are
    normalized so redirects and login callbacks stay on the public host and
    under the mount prefix.
    """
    match = resolve_route(request.url.path)
    rule = match.rule
    target_url = get_target_url(match, str(request.url.query))

    with traced_request(
        tracer,
        operation="proxy_request",
        route_name=rule.name,
        start_message=f"[Proxy] {request.method} {request.url.path} -> {rule.name} ({target_url})",
        extra_attrs={
            "proxy.target_url": target_url,
            "proxy.method": request.method,
            "proxy.mount_prefix": match.mount_prefix,
        },
    ) as span:
        client_ip = request.client.host if request.client else None
        headers = build_forward_headers(
            request.headers, match, client_ip, request.url.scheme
        )
        logger.debug(f"[Proxy] Forwarding headers: {mask_headers(headers)}")
        span.set_attribute("proxy.host", headers["host"])

        body = await request.body()
        client = get_http_client()

        try:
            upstream = await client.send(
                client.build_request(
                    method=request.method,
                    url=target_url,
                    headers=headers,
                    content=body,
                ),
                stream=True,
            )
        except httpx.TimeoutException as e:
            logger.error(f"[Proxy] Timeout for {target_url}: {e}")
            span.set_attribute("proxy.error", "timeout")
            PROXY_REQUESTS.labels(route=rule.name, status="504").inc()
            raise HTTPException(status_code=504, detail="Gateway timeout")
        except httpx.ConnectError as e:
            logger.error(f"[Proxy] Failed to connect to {target_url}: {e}")
            span.set_attribute("proxy.error", "connection_failed")
            PROXY_REQUESTS.labels(route=rule.name, status="502").inc()
            raise HTTPException(
                status_code=502, detail="Bad gateway - cannot connect to backend"
            )
        except httpx.HTTPError as e:
            logger.error(f"[Proxy] Error for {target_url}: {e}", exc_info=True)
            span.set_attribute("proxy.error", str(e))
            PROXY_REQUESTS.labels(route=rule.name, status="502").inc()
            raise HTTPException(status_code=502, detail=f"Bad gateway: {e}")

        # Until StreamingResponse owns it, the upstream stream is ours to close
        try:
            span.set_attribute("proxy.status_code", upstream.status_code)
            PROXY_REQUESTS.labels(
                route=rule.name, status=str(upstream.status_code)
            ).inc()

            origin = public_origin(request.headers, request.url.scheme)
            ctx = RedirectContext.for_match(match, origin)
            response_headers = rewrite_response_headers(
                upstream.headers.multi_items(), ctx, public_request_url(request, origin)
            )

            response = StreamingResponse(
                upstream.aiter_raw(),
                status_code=upstream.status_code,
                background=BackgroundTask(upstream.aclose),
            )
            for name, value in response_headers:
                response.headers.append(name, value)
        except BaseException:
            await upstream.aclose()
            raise
        return response


# Register catch-all route for proxying; admin routes are included first
@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies all requests through the path map."""
    return await forward_to_target(request)
