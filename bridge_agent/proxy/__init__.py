"""
出站代理与 TLS 核心模块
"""

from .cert_manager import CertManager
from .filters import match_no_proxy
from .resolver import ProxyDecision, resolve_proxy

__all__ = ['CertManager', 'ProxyDecision', 'match_no_proxy', 'resolve_proxy']
