"""
Agent 配置API（代理 + TLS），需要访问令牌
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Any, Optional

from .auth import require_token
from ...middleware.error_handler import ValidationException
from ...services.config_store import ConfigStore
from ...services.shared_services import get_config_store
from bridge_agent.proxy.cert_manager import CertManager

router = APIRouter(dependencies=[Depends(require_token)])


class ConfigUpdateRequest(BaseModel):
    config: Optional[Any] = None


@router.get("/config")
async def get_config(store: ConfigStore = Depends(get_config_store)):
    """获取当前配置"""
    return {"ok": True, "config": store.get_config().to_dict()}


@router.post("/config")
async def update_config(
    request: Optional[ConfigUpdateRequest] = None,
    store: ConfigStore = Depends(get_config_store)
):
    """合并部分配置并返回合并结果"""
    partial = request.config if request else None
    if not isinstance(partial, dict):
        raise ValidationException("Missing config object")

    saved = store.save(partial)
    return {"ok": True, "config": saved.to_dict()}


@router.get("/config/tls")
async def get_tls_info(store: ConfigStore = Depends(get_config_store)):
    """当前生效的 CA 证书包信息"""
    manager = CertManager(store.get_config().tls)
    return {"ok": True, "tls": manager.get_cert_info()}
