"""
全局错误处理中间件
提供统一的异常处理、日志记录和错误响应
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Dict, Any, List, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

# 日志中不输出的请求头
REDACTED_HEADERS = {"x-bhejo-token", "authorization", "cookie", "proxy-authorization"}


class ErrorResponse:
    """标准错误响应格式: {ok: false, error, message}"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str = None,
        errors: list = None,
        timestamp: str = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.errors = errors or []
        self.timestamp = timestamp or datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        response = {
            "ok": False,
            "error": self.error,
        }

        if self.message:
            response["message"] = self.message

        if self.errors:
            response["errors"] = self.errors

        return response

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


def _safe_headers(request: Request) -> Dict[str, str]:
    return {
        k: ("***" if k.lower() in REDACTED_HEADERS else v)
        for k, v in request.headers.items()
    }


def log_error(
    error_type: str,
    message: str,
    status_code: int = 500,
    request: Request = None,
    exception: Exception = None
):
    """记录错误日志"""
    where = f"{request.method} {request.url.path}" if request else "-"
    if status_code >= 500:
        logger.error(f"[{error_type}] {where}: {message}", exc_info=exception)
    else:
        logger.warning(f"[{error_type}] {where}: {message}")

    if request is not None:
        logger.debug(
            "请求上下文: client=%s headers=%s",
            request.client.host if request.client else None,
            _safe_headers(request),
        )


# 自定义业务异常
class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        message: str,
        error_type: str = "BUSINESS_ERROR",
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = None
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class AuthException(BusinessException):
    """配对码或访问令牌缺失/错误"""

    def __init__(self, message: str = "Invalid token"):
        super().__init__(
            message=message,
            error_type="AUTH_ERROR",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class ValidationException(BusinessException):
    """请求载荷格式错误"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message=message,
            error_type="VALIDATION_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST
        )
        self.errors = errors or []


def pydantic_errors(raw_errors) -> List[Dict[str, Any]]:
    """将 pydantic 错误列表转换为 {field, message, type}"""
    errors = []
    for error in raw_errors:
        errors.append({
            "field": ".".join(str(loc) for loc in error.get("loc", ())),
            "message": error.get("msg", ""),
            "type": error.get("type", "")
        })
    return errors


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """处理HTTP异常"""
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    log_error(
        error_type="HTTP_ERROR",
        message=message,
        status_code=exc.status_code,
        request=request,
    )
    return ErrorResponse(status_code=exc.status_code, error=message).to_response()


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """处理请求验证异常"""
    errors = pydantic_errors(exc.errors())

    log_error(
        error_type="VALIDATION_ERROR",
        message=f"请求参数验证失败: {errors}",
        status_code=status.HTTP_400_BAD_REQUEST,
        request=request,
    )

    return ErrorResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        error="Invalid request payload",
        message="请检查请求参数格式",
        errors=errors
    ).to_response()


async def business_exception_handler(request: Request, exc: BusinessException):
    """处理业务异常"""
    log_error(
        error_type=exc.error_type,
        message=exc.message,
        status_code=exc.status_code,
        request=request,
    )

    return ErrorResponse(
        status_code=exc.status_code,
        error=exc.message,
        message=exc.detail,
        errors=getattr(exc, "errors", None)
    ).to_response()


async def general_exception_handler(request: Request, exc: Exception):
    """处理通用异常"""
    log_error(
        error_type="INTERNAL_ERROR",
        message=str(exc),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request=request,
        exception=exc
    )

    return ErrorResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error="Internal error",
        message=str(exc)
    ).to_response()


def setup_error_handlers(app):
    """设置错误处理器"""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.debug("Error handlers registered successfully")
