"""
配对认证API路由
一次性配对码换取访问令牌，其余接口通过令牌访问
"""

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional

from ...config import settings
from ...services.auth_service import PairingService
from ...services.shared_services import get_pairing_service

router = APIRouter()

TOKEN_HEADER = "x-bhejo-token"


# 请求/响应模型
class PairRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pair_code: Any = Field(default=None, alias="pairCode")


class PairResponse(BaseModel):
    ok: bool = True
    token: str


class HealthResponse(BaseModel):
    ok: bool = True
    agent: str
    paired: bool
    port: int
    host: str


def _bearer(authorization: Optional[str]) -> str:
    value = str(authorization or "").strip()
    if value.lower().startswith("bearer "):
        return value[7:].strip()
    return ""


# 依赖注入
def require_token(
    x_bhejo_token: Optional[str] = Header(default=None, alias=TOKEN_HEADER),
    authorization: Optional[str] = Header(default=None),
    pairing: PairingService = Depends(get_pairing_service)
):
    """校验访问令牌（x-bhejo-token 头，或 Authorization: Bearer）"""
    pairing.require_token(x_bhejo_token or _bearer(authorization))


@router.get("/health", response_model=HealthResponse)
async def health_check(pairing: PairingService = Depends(get_pairing_service)):
    """健康检查端点"""
    return HealthResponse(
        agent=settings.agent_id,
        paired=pairing.is_paired(),
        port=settings.port,
        host=settings.host,
    )


@router.get("/pair")
async def get_pair_code(pairing: PairingService = Depends(get_pairing_service)):
    """返回当前配对码（不产生副作用）"""
    return {"ok": True, "pairCode": pairing.pair_code}


@router.post("/pair", response_model=PairResponse)
async def exchange_pair_code(
    request: Optional[PairRequest] = None,
    pairing: PairingService = Depends(get_pairing_service)
):
    """用配对码换取访问令牌，成功后配对码立即轮换"""
    code = request.pair_code if request else None
    token = pairing.exchange("" if code is None else str(code))
    return PairResponse(token=token)
