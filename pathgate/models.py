from pydantic import BaseModel
from typing import Dict, List, Optional


class ResolveRequest(BaseModel):
    path: str
    host: Optional[str] = None
    scheme: str = "https"
    client_ip: Optional[str] = None


class ResolveResponse(BaseModel):
    route: str
    pattern: str
    is_default: bool
    mount_prefix: str
    backend_url: str
    forwarded_headers: Dict[str, str]
    callback_url: Optional[str] = None


class AuthConfigResponse(BaseModel):
    route: str
    mode: str
    callback_url: Optional[str] = None
    config: Dict
    warnings: List[str]
