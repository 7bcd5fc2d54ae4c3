"""
请求执行服务 - 构造、发送并解码一次出站请求

支持: 代理（env/system/custom）、自定义 CA、关闭证书校验、二进制响应体、重定向链。
不做重试，不做缓存。
"""

import base64
import json
import logging
import ssl
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from ..config import settings
from ..middleware.error_handler import ValidationException
from .config_store import ConfigStore
from bridge_agent.models.send_request import BodySpec, KeyValueRow, SendRequest
from bridge_agent.proxy.cert_manager import CertManager
from bridge_agent.proxy.resolver import ProxyDecision, resolve_proxy

logger = logging.getLogger(__name__)


def headers_to_dict(headers: Union[List[KeyValueRow], Mapping[str, Any], None]) -> Dict[str, str]:
    """请求头列表转字典，跳过空键与禁用的行"""
    if not headers:
        return {}
    if isinstance(headers, Mapping):
        return {str(k).strip(): "" if v is None else str(v) for k, v in headers.items() if str(k).strip()}

    out: Dict[str, str] = {}
    for row in headers:
        if not row.enabled or not row.clean_key:
            continue
        out[row.clean_key] = row.clean_value
    return out


def merge_query(url: str, params: Optional[List[KeyValueRow]]) -> str:
    """把启用的查询参数写入 URL，同名参数被替换（保留第一次出现的位置）"""
    rows = [p for p in (params or []) if p.enabled and p.clean_key]
    if not rows:
        return url

    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    for row in rows:
        key, value = row.clean_key, row.clean_value
        replaced = False
        next_pairs = []
        for k, v in pairs:
            if k != key:
                next_pairs.append((k, v))
            elif not replaced:
                next_pairs.append((key, value))
                replaced = True
        if not replaced:
            next_pairs.append((key, value))
        pairs = next_pairs

    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), parts.fragment))


def build_body(body: Optional[BodySpec]) -> Tuple[Optional[str], str]:
    """把带标签的请求体转换为 (载荷, 推断的 Content-Type)"""
    if body is None:
        return None, ""

    mode = body.mode or "none"
    if mode == "raw":
        return body.raw or "", body.content_type or ""

    if mode == "json":
        value = body.json_value
        raw = value if isinstance(value, str) else json.dumps({} if value is None else value, ensure_ascii=False)
        return raw, "application/json"

    if mode == "form-url":
        pairs = [(row.clean_key, row.clean_value) for row in body.items if row.enabled and row.clean_key]
        return urlencode(pairs), "application/x-www-form-urlencoded"

    # multipart 暂不支持
    return None, ""


def is_text_like(content_type: Optional[str]) -> bool:
    ct = str(content_type or "").lower()
    if not ct:
        return True
    if "application/json" in ct:
        return True
    if ct.startswith("text/"):
        return True
    if "xml" in ct:
        return True
    if "javascript" in ct:
        return True
    if "x-www-form-urlencoded" in ct:
        return True
    return False


def decode_body(content: Optional[bytes], content_type: Optional[str], encoding: Optional[str] = None) -> Dict[str, Any]:
    """文本类响应返回原文，其余返回 base64；sizeBytes 总是原始字节数"""
    if not content:
        return {"body": "", "isBase64": False, "sizeBytes": 0}

    size = len(content)
    if is_text_like(content_type):
        try:
            text = content.decode(encoding or "utf-8", errors="replace")
        except LookupError:
            text = content.decode("utf-8", errors="replace")
        return {"body": text, "isBase64": False, "sizeBytes": size}

    return {"body": base64.b64encode(content).decode("ascii"), "isBase64": True, "sizeBytes": size}


def response_headers(headers: httpx.Headers) -> Dict[str, Any]:
    """响应头转字典，键小写；set-cookie 保留为列表"""
    out: Dict[str, Any] = {}
    for key in headers.keys():
        values = headers.get_list(key)
        if key == "set-cookie":
            out[key] = values
        else:
            out[key] = ", ".join(values)
    return out


def extract_redirect_chain(response: httpx.Response) -> List[Dict[str, Any]]:
    return [
        {
            "url": str(hop.url),
            "statusCode": hop.status_code,
            "headers": response_headers(hop.headers),
        }
        for hop in response.history
    ]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def build_verify(tls) -> Union[ssl.SSLContext, bool]:
    """证书校验参数；自定义 CA 无法解析时记录日志并改用系统信任库"""
    try:
        return CertManager(tls).build_verify()
    except ssl.SSLError as e:
        logger.warning(f"自定义 CA 证书无法解析，改用系统信任库: {e}")
        return ssl.create_default_context()


class RequestExecutor:
    """执行单次出站请求"""

    def __init__(
        self,
        config_store: ConfigStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            config_store: 配置存储
            transport: 指定底层 transport（测试用），设置后忽略代理 transport
            environ: 代理环境变量来源，默认 os.environ
        """
        self.config_store = config_store
        self._transport = transport
        self._environ = environ

    async def send(self, request: SendRequest) -> Dict[str, Any]:
        """发送请求。HTTP 状态码不会导致异常；网络层失败返回 ok=False 的结果

        Raises:
            ValidationException: URL 无效
        """
        config = self.config_store.get_config()
        started = time.perf_counter()

        method = str(request.method or "GET").upper()
        parts = urlsplit(str(request.url or ""))
        if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
            raise ValidationException("Invalid url", errors=[{"field": "url", "message": str(request.url)}])
        url = merge_query(request.url, request.params)

        headers = headers_to_dict(request.headers)
        data, content_type = build_body(request.body)
        if content_type and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = content_type

        max_redirects = request.max_redirects if request.max_redirects is not None else settings.default_max_redirects
        follow_redirects = request.follow_redirects is not False and max_redirects > 0
        timeout_ms = request.timeout_ms if request.timeout_ms is not None else settings.default_timeout_ms

        decision = ProxyDecision()
        try:
            verify = build_verify(config.tls)
            decision = resolve_proxy(url, config, verify=verify, environ=self._environ)

            client_kwargs: Dict[str, Any] = {
                "verify": verify,
                # 代理完全由配置决定，不读取环境变量
                "trust_env": False,
                "follow_redirects": follow_redirects,
                "max_redirects": max_redirects,
                # 0 表示不限时
                "timeout": timeout_ms / 1000.0 if timeout_ms else None,
            }
            if self._transport is not None:
                client_kwargs["transport"] = self._transport
            elif decision.mounts():
                client_kwargs["mounts"] = decision.mounts()

            async with httpx.AsyncClient(**client_kwargs) as client:
                response = await client.request(method, url, headers=headers, content=data)
        except (httpx.HTTPError, httpx.InvalidURL, ssl.SSLError, OSError, ValueError) as e:
            elapsed = _elapsed_ms(started)
            logger.warning(f"请求失败: {method} {parts.hostname} ({type(e).__name__}: {e}) {elapsed}ms")
            return {
                "ok": False,
                "error": "Request failed",
                "message": str(e) or type(e).__name__,
                "ms": elapsed,
                **decision.to_dict(),
            }

        content_type_resp = response.headers.get("content-type", "")
        converted = decode_body(response.content, content_type_resp, response.charset_encoding)
        elapsed = _elapsed_ms(started)
        logger.info(f"{method} {parts.hostname} -> {response.status_code} {elapsed}ms ({decision.proxy_source})")

        return {
            "ok": 200 <= response.status_code < 300,
            "status": response.status_code,
            "statusText": response.reason_phrase or "",
            "headers": response_headers(response.headers),
            **converted,
            "contentType": content_type_resp,
            "ms": elapsed,
            "redirectChain": extract_redirect_chain(response),
            "finalUrl": str(response.url),
            **decision.to_dict(),
        }
