"""
Cookie Jar API - 查看、预览附加结果、写入与清空持久化 cookie
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from urllib.parse import urlsplit

from .auth import require_token
from ...middleware.error_handler import ValidationException
from ...services.cookie_jar_store import CookieJarStore
from ...services.cookie_resolver import CookieResolver
from ...services.shared_services import get_cookie_jar_store, get_cookie_resolver

router = APIRouter(dependencies=[Depends(require_token)])


class ApplySetCookieRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    jar_id: str = Field(default="default", alias="jarId")
    url: str
    set_cookies: List[str] = Field(default_factory=list, alias="setCookies")


class ClearJarRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    jar_id: str = Field(default="default", alias="jarId")


@router.get("/cookiejar")
async def list_cookies(
    jar_id: str = Query(default="default", alias="jarId"),
    store: CookieJarStore = Depends(get_cookie_jar_store)
):
    """列出 jar 中未过期的 cookie"""
    cookies = store.list_cookies(jar_id)
    return {"ok": True, "jarId": jar_id, "cookies": [c.to_dict() for c in cookies]}


@router.get("/cookiejar/resolve")
async def resolve_cookies(
    url: str = Query(...),
    jar_id: str = Query(default="default", alias="jarId"),
    site_origin: str = Query(default="", alias="siteOrigin"),
    manual_cookie_header: str = Query(default="", alias="manualCookieHeader"),
    resolver: CookieResolver = Depends(get_cookie_resolver)
):
    """计算某个 URL 会附加哪些 cookie，以及其余 cookie 被排除的原因"""
    try:
        resolution = resolver.resolve(jar_id, url, site_origin, manual_cookie_header)
    except ValueError as e:
        raise ValidationException("Invalid url", errors=[{"field": "url", "message": str(e)}])
    return {"ok": True, "jarId": jar_id, **resolution.to_dict()}


@router.post("/cookiejar/apply")
async def apply_set_cookies(
    request: ApplySetCookieRequest,
    store: CookieJarStore = Depends(get_cookie_jar_store)
):
    """把响应中的 Set-Cookie 写入 jar"""
    parts = urlsplit(request.url)
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ValidationException("Invalid url", errors=[{"field": "url", "message": request.url}])

    cookies = store.apply_set_cookie(request.jar_id, request.url, request.set_cookies)
    return {"ok": True, "jarId": request.jar_id, "cookies": [c.to_dict() for c in cookies]}


@router.post("/cookiejar/clear")
async def clear_jar(
    request: Optional[ClearJarRequest] = None,
    store: CookieJarStore = Depends(get_cookie_jar_store)
):
    jar_id = request.jar_id if request else "default"
    return {"ok": True, "jarId": jar_id, "cleared": store.clear(jar_id)}
