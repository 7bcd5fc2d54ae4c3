"""出站代理选择

判定顺序固定为:
  应用级 noProxy 规则 → proxyMode 分发 → 环境 NO_PROXY 规则 → proxyFor 开关
"""

from __future__ import annotations

import logging
import os
import ssl
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlsplit

import httpx

from bridge_agent.models.agent_config import AgentConfig, CustomProxy
from bridge_agent.proxy.cert_manager import CertManager
from bridge_agent.proxy.filters import match_no_proxy, parse_rule_list

logger = logging.getLogger(__name__)

SOURCE_OFF = "off"
SOURCE_CUSTOM = "custom"
SOURCE_ENV = "env"
SOURCE_SYSTEM = "system(env)"
SOURCE_NO_PROXY_APP = "off(no_proxy_app)"
SOURCE_NO_PROXY_ENV = "off(no_proxy_env)"
SOURCE_PROXY_FOR_DISABLED = "off(proxyFor disabled)"

# 与 encodeURIComponent 保持一致的保留字符
_USERINFO_SAFE = "!~*'()"


@dataclass
class ProxyDecision:
    proxy_url: str = ""
    proxy_source: str = SOURCE_OFF
    http_transport: Optional[httpx.AsyncBaseTransport] = None
    https_transport: Optional[httpx.AsyncBaseTransport] = None

    @property
    def uses_proxy(self) -> bool:
        return bool(self.proxy_url)

    def mounts(self) -> Optional[Dict[str, httpx.AsyncBaseTransport]]:
        """httpx.AsyncClient 的 mounts 参数；不走代理时为 None"""
        if not self.uses_proxy:
            return None
        return {
            "http://": self.http_transport,
            "https://": self.https_transport,
        }

    def to_dict(self) -> Dict[str, str]:
        # 代理地址可能带凭据，对外只暴露是否设置
        return {
            "proxySource": self.proxy_source,
            "proxyUrl": "(set)" if self.proxy_url else "",
        }


def build_custom_proxy_url(custom: Optional[CustomProxy]) -> str:
    """根据自定义代理配置拼接代理 URL，host/port 不完整时返回空串"""
    if custom is None or not custom.host or not custom.port:
        return ""

    auth = ""
    if custom.auth.enabled and custom.auth.user:
        user = quote(custom.auth.user, safe=_USERINFO_SAFE)
        password = quote(custom.auth.password or "", safe=_USERINFO_SAFE)
        auth = f"{user}:{password}@"
    return f"{custom.protocol or 'http'}://{auth}{custom.host}:{custom.port}"


def env_proxy_for_url(target_url: str, environ: Optional[Mapping[str, str]] = None) -> Tuple[str, list]:
    """读取环境变量中的代理设置。

    按请求协议取 HTTPS_PROXY / HTTP_PROXY（大小写均可），
    未设置时回退到另一协议的变量。

    Returns:
        (代理 URL, NO_PROXY 规则列表)
    """
    env = os.environ if environ is None else environ
    https_proxy = env.get("HTTPS_PROXY") or env.get("https_proxy") or ""
    http_proxy = env.get("HTTP_PROXY") or env.get("http_proxy") or ""

    if urlsplit(target_url).scheme.lower() == "https":
        proxy = https_proxy or http_proxy
    else:
        proxy = http_proxy or https_proxy

    no_proxy = parse_rule_list(env.get("NO_PROXY") or env.get("no_proxy") or "")
    return proxy.strip(), no_proxy


def select_proxy(
    target_url: str,
    config: AgentConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[str, str]:
    """为目标 URL 选择代理。

    Returns:
        (代理 URL 或空串, 来源标记)
    """
    parts = urlsplit(target_url)
    host = (parts.hostname or "").lower()

    if match_no_proxy(host, config.no_proxy):
        return "", SOURCE_NO_PROXY_APP

    mode = config.proxy_mode or "off"
    proxy_url = ""
    source = SOURCE_OFF

    if mode == "custom":
        proxy_url = build_custom_proxy_url(config.custom_proxy)
        source = SOURCE_CUSTOM if proxy_url else SOURCE_OFF
    elif mode in ("env", "system"):
        proxy_url, env_no_proxy = env_proxy_for_url(target_url, environ)
        if proxy_url:
            source = SOURCE_SYSTEM if mode == "system" else SOURCE_ENV
            if match_no_proxy(host, env_no_proxy):
                return "", SOURCE_NO_PROXY_ENV

    if not proxy_url:
        return "", source

    is_https = parts.scheme.lower() == "https"
    proxy_for = config.proxy_for
    if (is_https and proxy_for.https is False) or (not is_https and proxy_for.http is False):
        return "", SOURCE_PROXY_FOR_DISABLED

    return proxy_url, source


def create_transports(
    proxy_url: str,
    verify: Union[ssl.SSLContext, bool],
) -> Tuple[httpx.AsyncHTTPTransport, httpx.AsyncHTTPTransport]:
    """分别为明文与加密流量创建经由代理的 transport"""
    proxy = httpx.Proxy(proxy_url)
    http_transport = httpx.AsyncHTTPTransport(proxy=proxy)
    https_transport = httpx.AsyncHTTPTransport(proxy=proxy, verify=verify)
    return http_transport, https_transport


def resolve_proxy(
    target_url: str,
    config: AgentConfig,
    verify: Union[ssl.SSLContext, bool, None] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProxyDecision:
    """计算目标 URL 的代理决策，并在需要时创建 transport。

    Args:
        target_url: 出站请求 URL（已合并查询参数）
        config: 当前 Agent 配置
        verify: 证书校验参数，未提供时根据 config.tls 构造
        environ: 环境变量，默认 os.environ
    """
    proxy_url, source = select_proxy(target_url, config, environ)
    if not proxy_url:
        logger.debug(f"不使用代理: {source}")
        return ProxyDecision(proxy_source=source)

    if verify is None:
        verify = CertManager(config.tls).build_verify()

    http_transport, https_transport = create_transports(proxy_url, verify)
    logger.debug(f"使用代理: source={source}")
    return ProxyDecision(
        proxy_url=proxy_url,
        proxy_source=source,
        http_transport=http_transport,
        https_transport=https_transport,
    )
