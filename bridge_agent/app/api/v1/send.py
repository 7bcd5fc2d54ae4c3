"""
请求转发API - 由 Agent 代为发出请求
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .auth import require_token
from ...middleware.error_handler import BusinessException
from ...services.request_executor import RequestExecutor
from ...services.shared_services import get_request_executor
from bridge_agent.models.send_request import SendRequest

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_token)])


@router.post("/send")
async def send_request(
    request: SendRequest,
    executor: RequestExecutor = Depends(get_request_executor)
):
    """执行一次出站请求。

    网络层失败体现在 result.ok=False 中；只有 Agent 自身异常才返回 500。
    """
    try:
        result = await executor.send(request)
    except BusinessException:
        raise
    except Exception as e:
        logger.exception(f"发送请求时出现未预期错误: {e}")
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "Send failed", "message": str(e)}
        )
    return {"ok": True, "result": result}
