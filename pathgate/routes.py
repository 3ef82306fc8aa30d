import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace

from pathgate.auth import audit_route, build_auth_config, callback_url
from pathgate.models import AuthConfigResponse, ResolveRequest, ResolveResponse
from pathgate.rewrite import build_forward_headers, public_origin
from pathgate.routing import AuthMode, NoRouteMatchError, get_route_table, matcher_for
from pathgate.utils.traced_requests import traced_request
from pathgate.vars import GATEWAY_ADMIN_PREFIX

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

tracer = trace.get_tracer(__name__)

if GATEWAY_ADMIN_PREFIX:
    router.prefix = GATEWAY_ADMIN_PREFIX
    logger.info(f"Using GATEWAY_ADMIN_PREFIX: {GATEWAY_ADMIN_PREFIX}")
else:
    logger.warning("GATEWAY_ADMIN_PREFIX is empty, admin routes share the proxied namespace")


@router.get("/health")
async def health():
    table = get_route_table()
    return {"status": "ok", "routes": len(table.all_rules())}


@router.get("/routes")
async def list_routes():
    table = get_route_table()
    return JSONResponse(content=table.model_dump(mode="json"))


@router.post("/resolve", response_model=ResolveResponse)
async def resolve(body: ResolveRequest, request: Request):
    """Dry run: show where a path would be sent and with which headers."""
    with traced_request(
        tracer,
        operation="resolve_route",
        route_name=None,
        start_message=f"[Routes] Resolving {body.path} (host {body.host})",
    ) as span:
        try:
            match = matcher_for(get_route_table()).match(body.path)
        except NoRouteMatchError as e:
            raise HTTPException(status_code=404, detail=str(e))
        span.set_attribute("gateway.route", match.rule.name)

        incoming = {"host": body.host or request.headers.get("host", "")}
        headers = build_forward_headers(
            incoming, match, body.client_ip, body.scheme
        )
        origin = public_origin(incoming, body.scheme)
        auth_callback = None
        if match.rule.auth.mode != AuthMode.NONE and origin:
            auth_callback = callback_url(match.rule, origin)

        return ResolveResponse(
            route=match.rule.name,
            pattern=match.pattern,
            is_default=match.is_default,
            mount_prefix=match.mount_prefix,
            backend_url=match.backend_url,
            forwarded_headers=headers,
            callback_url=auth_callback,
        )


@router.get("/routes/{name}/auth-config", response_model=AuthConfigResponse)
async def get_auth_config(name: str, request: Request):
    """Recommended auth.json fragment (or custom-auth hints) for one rule."""
    rule = get_route_table().get_rule(name)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Unknown route {name!r}")

    origin = public_origin(request.headers, request.url.scheme)
    try:
        config = build_auth_config(rule, origin=origin or None)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return AuthConfigResponse(
        route=rule.name,
        mode=rule.auth.mode.value,
        callback_url=callback_url(rule, origin) if origin else None,
        config=config,
        warnings=audit_route(rule),
    )
