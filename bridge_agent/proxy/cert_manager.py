"""
CA证书管理 - 解析自定义信任的 CA 证书包
"""

import os
import ssl
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bridge_agent.models.agent_config import TlsSettings

logger = logging.getLogger(__name__)


def load_ca_bundle(ca_pem: str = "", ca_pem_path: str = "") -> Optional[bytes]:
    """返回 CA 证书包内容，没有自定义证书时返回 None。

    优先级:
      1) ca_pem 文本（UI 粘贴），统一为恰好一个结尾换行
      2) ca_pem_path 指向的本地文件，原样读取
    读取失败不会抛出异常。
    """
    pem = str(ca_pem or "").strip()
    if pem:
        return (pem + "\n").encode("utf-8")

    path = str(ca_pem_path or "").strip()
    if not path:
        return None

    try:
        if os.path.isfile(path):
            with open(path, "rb") as f:
                return f.read()
    except OSError as e:
        logger.debug(f"读取CA证书文件失败: {path}: {e}")
    return None


class CertManager:
    """证书管理器"""

    def __init__(self, tls: Optional[TlsSettings] = None):
        """
        初始化证书管理器

        Args:
            tls: TLS 配置，默认为校验证书且不使用自定义 CA
        """
        self.tls = tls or TlsSettings()

    @property
    def reject_unauthorized(self) -> bool:
        return self.tls.reject_unauthorized is not False

    def get_bundle_source(self) -> str:
        """证书来源: inline / path / none"""
        if str(self.tls.ca_pem or "").strip():
            return "inline"
        if load_ca_bundle(ca_pem_path=self.tls.ca_pem_path) is not None:
            return "path"
        return "none"

    def load_bundle(self) -> Optional[bytes]:
        return load_ca_bundle(self.tls.ca_pem, self.tls.ca_pem_path)

    def build_verify(self) -> Union[ssl.SSLContext, bool]:
        """构造出站连接使用的证书校验参数。

        Returns:
            False 表示不校验证书；否则为 SSLContext（自定义 CA 或系统信任库）

        Raises:
            ssl.SSLError: 自定义 CA 内容无法解析
        """
        if not self.reject_unauthorized:
            return False

        bundle = self.load_bundle()
        if bundle is None:
            return ssl.create_default_context()
        return ssl.create_default_context(cadata=bundle.decode("utf-8", errors="replace"))

    def get_cert_info(self) -> dict:
        """获取证书包详细信息，包括每张证书的过期时间"""
        bundle = self.load_bundle()
        info = {
            "source": self.get_bundle_source(),
            "rejectUnauthorized": self.reject_unauthorized,
            "certificates": [],
        }
        if bundle is None:
            return info

        try:
            from cryptography import x509

            certs = x509.load_pem_x509_certificates(bundle)
        except ValueError as e:
            info["error"] = f"读取证书信息失败: {e}"
            return info

        info["count"] = len(certs)
        now = datetime.now(timezone.utc)
        for cert in certs:
            expiry_date = cert.not_valid_after_utc
            days_until_expiry = (expiry_date - now).days
            info["certificates"].append({
                "subject": cert.subject.rfc4514_string(),
                "issuer": cert.issuer.rfc4514_string(),
                "expiry_date": expiry_date.isoformat(),
                "days_until_expiry": days_until_expiry,
                "is_expired": expiry_date <= now,
            })
        return info
