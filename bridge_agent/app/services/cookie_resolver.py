"""
Cookie 解析服务 - 按浏览器规则计算请求应携带的 cookie

每条 cookie 按以下顺序检查，命中第一条即排除：
过期 → Secure → SameSite=None 需 Secure → 跨站 SameSite → 域名 → 路径。
跨站时 Lax 一律排除（不区分顶层导航）。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from bridge_agent.models.cookie import CookieRecord, domain_matches, now_ms, path_matches
from .cookie_jar_store import CookieJarStore

logger = logging.getLogger(__name__)

REASON_EXPIRED = "Expired"
REASON_SECURE_OVER_HTTP = "Secure cookie over HTTP"
REASON_SAMESITE_NONE_INSECURE = "SameSite=None requires Secure"
REASON_SAMESITE_STRICT = "SameSite=Strict blocks cross-site requests"
REASON_SAMESITE_LAX = "SameSite=Lax blocks cross-site XHR/fetch"
REASON_HOST_ONLY_MISMATCH = "Host-only domain mismatch"
REASON_DOMAIN_MISMATCH = "Domain mismatch"
REASON_PATH_MISMATCH = "Path mismatch"
REASON_OVERRIDDEN = "Overridden by a more specific cookie with the same name"
REASON_MANUAL_OVERRIDE = "Overridden by manual Cookie header"
REASON_MANUAL_PRESENT = "Manual Cookie header present"

NOTE_HTTP_ONLY = "HttpOnly: not accessible to scripts"


def effective_same_site(cookie: CookieRecord) -> str:
    # 未设置时按现代浏览器默认值 Lax 处理
    return (cookie.same_site or "").lower() or "lax"


def _site_host(site_origin: str) -> str:
    if not site_origin:
        return ""
    try:
        return (urlsplit(site_origin).hostname or "").lower()
    except ValueError:
        return ""


@dataclass
class CookieResolution:
    header: str = ""
    cookies_sent: List[Dict[str, Any]] = field(default_factory=list)
    cookies_excluded: List[Dict[str, Any]] = field(default_factory=list)
    manual_override: bool = False
    is_cross_site: bool = False
    site_origin: str = ""
    host: str = ""
    path: str = "/"
    is_https: bool = False

    @property
    def count(self) -> int:
        if self.manual_override:
            return len([p for p in self.header.split(";") if p.strip()])
        return len(self.cookies_sent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": self.header,
            "cookiesSent": self.cookies_sent,
            "cookiesExcluded": self.cookies_excluded,
            "manualOverride": self.manual_override,
            "isCrossSite": self.is_cross_site,
            "siteOrigin": self.site_origin,
            "host": self.host,
            "path": self.path,
            "isHttps": self.is_https,
            "count": self.count,
        }


def _exclusion_reason(
    cookie: CookieRecord,
    host: str,
    path: str,
    is_https: bool,
    is_cross_site: bool,
    now: int,
) -> Optional[str]:
    """返回第一条排除原因，可发送时返回 None"""
    if cookie.is_expired(now):
        return REASON_EXPIRED

    if cookie.secure and not is_https:
        return REASON_SECURE_OVER_HTTP

    same_site = effective_same_site(cookie)
    if same_site == "none" and not cookie.secure:
        return REASON_SAMESITE_NONE_INSECURE

    if is_cross_site:
        if same_site == "strict":
            return REASON_SAMESITE_STRICT
        if same_site == "lax":
            return REASON_SAMESITE_LAX

    if cookie.host_only:
        if (cookie.domain or "").lower() != host:
            return REASON_HOST_ONLY_MISMATCH
    elif not domain_matches(cookie.domain, host):
        return REASON_DOMAIN_MISMATCH

    if not path_matches(cookie.path, path):
        return REASON_PATH_MISMATCH

    return None


def _why_parts(cookie: CookieRecord) -> List[str]:
    return [
        "Host-only match" if cookie.host_only else "Domain match",
        f"Path match ({cookie.path or '/'})",
        "Secure" if cookie.secure else "Not secure",
        f"SameSite={cookie.same_site or 'default(Lax)'}",
    ]


def resolve_cookies_for_url(
    cookies: List[CookieRecord],
    url: str,
    site_origin: str = "",
    manual_cookie_header: str = "",
    now: Optional[int] = None,
) -> CookieResolution:
    """计算 cookies 中哪些会被附加到 url 的请求上。

    Args:
        cookies: jar 中的全部 cookie
        url: 请求 URL
        site_origin: 发起请求的页面来源，主机不同即视为跨站
        manual_cookie_header: 手动填写的 Cookie 头，存在时完全绕过 jar
        now: 当前毫秒时间戳（测试用）

    Raises:
        ValueError: url 不是合法的绝对 URL
    """
    if now is None:
        now = now_ms()

    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if not parts.scheme or not host:
        raise ValueError(f"Invalid url: {url}")
    path = parts.path or "/"
    is_https = parts.scheme.lower() == "https"

    site_host = _site_host(site_origin)
    is_cross_site = bool(site_host and site_host != host)

    candidates = []
    excluded: List[Dict[str, Any]] = []

    for cookie in cookies:
        base = cookie.to_dict()
        notes = [NOTE_HTTP_ONLY] if cookie.http_only else []

        reason = _exclusion_reason(cookie, host, path, is_https, is_cross_site, now)
        if reason:
            excluded.append({**base, "reasons": [reason], "notes": notes})
            continue
        candidates.append((cookie, base, notes))

    # 路径最长（最具体）的优先，sort 是稳定排序
    candidates.sort(key=lambda item: len(item[0].path or ""), reverse=True)

    seen = set()
    sent: List[Dict[str, Any]] = []
    pairs = []
    for cookie, base, notes in candidates:
        if cookie.name in seen:
            excluded.append({**base, "reasons": [REASON_OVERRIDDEN], "notes": notes})
            continue
        seen.add(cookie.name)
        sent.append({**base, "whyParts": _why_parts(cookie), "notes": notes})
        pairs.append(f"{cookie.name}={cookie.value}")

    resolution = CookieResolution(
        is_cross_site=is_cross_site,
        site_origin=site_origin or "",
        host=host,
        path=path,
        is_https=is_https,
    )

    if manual_cookie_header:
        overridden = [
            {
                **{k: v for k, v in c.items() if k != "whyParts"},
                "reasons": [REASON_MANUAL_OVERRIDE, REASON_MANUAL_PRESENT],
            }
            for c in sent
        ]
        already = [
            {**c, "reasons": [*c["reasons"], REASON_MANUAL_PRESENT]}
            for c in excluded
        ]
        resolution.header = manual_cookie_header
        resolution.cookies_excluded = overridden + already
        resolution.manual_override = True
        return resolution

    resolution.header = "; ".join(pairs)
    resolution.cookies_sent = sent
    resolution.cookies_excluded = excluded
    return resolution


class CookieResolver:
    """从持久化 jar 读取 cookie 并计算附加结果（只读）"""

    def __init__(self, jar_store: CookieJarStore):
        self.jar_store = jar_store

    def resolve(
        self,
        jar_id: Optional[str],
        url: str,
        site_origin: str = "",
        manual_cookie_header: str = "",
        now: Optional[int] = None,
    ) -> CookieResolution:
        cookies = self.jar_store.load(jar_id)
        resolution = resolve_cookies_for_url(cookies, url, site_origin, manual_cookie_header, now)
        logger.debug(
            f"Cookie 解析: jar={jar_id} host={resolution.host} "
            f"sent={len(resolution.cookies_sent)} excluded={len(resolution.cookies_excluded)}"
        )
        return resolution
