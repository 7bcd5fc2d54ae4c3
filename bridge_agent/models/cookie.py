"""Cookie 记录模型与 Set-Cookie 解析"""
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

SAME_SITE_VALUES = ("strict", "lax", "none")


class CookieParseError(ValueError):
    """Set-Cookie 指令无法解析"""


def now_ms() -> int:
    return int(time.time() * 1000)


def domain_matches(cookie_domain: str, host: str) -> bool:
    """host 等于 cookie 域，或是其子域名"""
    cd = str(cookie_domain or "").lower()
    h = str(host or "").lower()
    if cd.startswith("."):
        cd = cd[1:]
    if not cd or not h:
        return False
    return h == cd or h.endswith("." + cd)


def path_matches(cookie_path: str, request_path: str) -> bool:
    """RFC 6265 路径匹配：相等，或在 "/" 边界上的前缀"""
    cp = cookie_path or "/"
    rp = request_path or "/"
    if cp == "/" or rp == cp:
        return True
    if rp.startswith(cp):
        if cp.endswith("/"):
            return True
        return rp[len(cp)] == "/"
    return False


def default_cookie_path(request_path: str) -> str:
    """未指定 Path 时的默认路径：请求路径的"目录"部分"""
    if not request_path or not request_path.startswith("/"):
        return "/"
    idx = request_path.rfind("/")
    if idx <= 0:
        return "/"
    return request_path[:idx]


def _parse_http_date(value: str) -> Optional[int]:
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    return int(dt.timestamp() * 1000)


@dataclass
class CookieRecord:
    name: str
    value: str
    domain: str
    host_only: bool = True
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    same_site: str = ""
    expires_at: Optional[int] = None  # 毫秒时间戳，None 表示会话 cookie

    @property
    def key(self):
        """同名 cookie 的唯一键"""
        return (self.name, self.domain, self.path)

    def is_expired(self, now: Optional[int] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now_ms() if now is None else now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "hostOnly": self.host_only,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "sameSite": self.same_site,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CookieRecord":
        name = str(data.get("name") or "")
        if not name:
            raise CookieParseError("cookie 缺少 name")
        expires = data.get("expiresAt")
        return cls(
            name=name,
            value=str(data.get("value") or ""),
            domain=str(data.get("domain") or "").lower(),
            host_only=bool(data.get("hostOnly", True)),
            path=str(data.get("path") or "/"),
            secure=bool(data.get("secure", False)),
            http_only=bool(data.get("httpOnly", False)),
            same_site=str(data.get("sameSite") or "").lower(),
            expires_at=int(expires) if expires is not None else None,
        )

    @classmethod
    def from_set_cookie(cls, set_cookie: str, request_url: str, now: Optional[int] = None) -> "CookieRecord":
        """按请求 URL 解析一条 Set-Cookie 指令。

        Raises:
            CookieParseError: 指令格式错误，或 Domain 与请求主机不匹配
        """
        if now is None:
            now = now_ms()

        parts = urlsplit(request_url)
        host = (parts.hostname or "").lower()
        if not host:
            raise CookieParseError(f"无效的请求 URL: {request_url}")

        segments = [s.strip() for s in str(set_cookie or "").split(";")]
        segments = [s for s in segments if s]
        if not segments:
            raise CookieParseError("空的 Set-Cookie")

        name_value, attrs = segments[0], segments[1:]
        eq = name_value.find("=")
        if eq <= 0:
            raise CookieParseError(f"缺少 cookie 名称: {name_value!r}")

        cookie = cls(
            name=name_value[:eq].strip(),
            value=name_value[eq + 1:].strip(),
            domain=host,
            host_only=True,
            path=default_cookie_path(parts.path or "/"),
        )

        max_age_seen = False
        for attr in attrs:
            k, _, v = attr.partition("=")
            k = k.strip().lower()
            v = v.strip()

            if k == "domain" and v:
                domain = v.lstrip(".").lower()
                if not domain_matches(domain, host):
                    raise CookieParseError(f"Domain={domain} 与请求主机 {host} 不匹配")
                cookie.domain = domain
                cookie.host_only = False
            elif k == "path" and v:
                cookie.path = v if v.startswith("/") else f"/{v}"
            elif k == "max-age" and v:
                try:
                    seconds = int(v)
                except ValueError:
                    continue
                # Max-Age 优先于 Expires
                cookie.expires_at = now + seconds * 1000
                max_age_seen = True
            elif k == "expires" and v and not max_age_seen:
                ts = _parse_http_date(v)
                if ts is not None:
                    cookie.expires_at = ts
            elif k == "secure":
                cookie.secure = True
            elif k == "httponly":
                cookie.http_only = True
            elif k == "samesite" and v:
                same_site = v.lower()
                cookie.same_site = same_site if same_site in SAME_SITE_VALUES else ""

        return cookie
