"""
配对认证服务 - 一次性配对码换取长期访问令牌
"""

import hmac
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import logging

from ..middleware.error_handler import AuthException
from .config_store import ConfigStore

logger = logging.getLogger(__name__)


def make_pair_code() -> str:
    """短且易读的配对码，例如 "a1b2c3d4" """
    return secrets.token_hex(4)


def make_token() -> str:
    return secrets.token_hex(32)


@dataclass
class PairingState:
    pair_code: str = field(default_factory=make_pair_code)
    issued_at: datetime = field(default_factory=datetime.now)
    exchanges: int = 0


class PairingService:
    """配对码在进程启动时生成，成功兑换一次后立即轮换"""

    def __init__(self, store: ConfigStore):
        self._store = store
        self._state: Optional[PairingState] = None
        self._lock = threading.Lock()

    @property
    def pair_code(self) -> str:
        if self._state is None:
            return self.issue()
        return self._state.pair_code

    def issue(self) -> str:
        """生成新的配对码（替换旧码）"""
        with self._lock:
            self._state = PairingState()
            return self._state.pair_code

    def is_paired(self) -> bool:
        return bool(self._store.get_token())

    def get_or_create_token(self) -> str:
        existing = self._store.get_token()
        if existing:
            return existing
        logger.info("首次配对，生成访问令牌")
        return self._store.set_token(make_token())

    def exchange(self, code: Optional[str]) -> str:
        """用配对码换取访问令牌。

        比较与轮换在同一把锁内完成，同一配对码只能成功兑换一次。

        Raises:
            AuthException: 配对码为空或不匹配
        """
        got = str(code or "")
        with self._lock:
            if self._state is None:
                self._state = PairingState()
            current = self._state.pair_code
            if not got or not hmac.compare_digest(got.encode(), current.encode()):
                logger.warning("配对失败: 配对码不匹配")
                raise AuthException("Invalid pairCode")

            token = self.get_or_create_token()
            exchanges = self._state.exchanges + 1
            next_state = PairingState(exchanges=exchanges)
            while next_state.pair_code == current:
                next_state = PairingState(exchanges=exchanges)
            self._state = next_state
            logger.info(f"配对成功，配对码已轮换 (第 {exchanges} 次兑换)")
            return token

    def require_token(self, supplied: Optional[str]) -> None:
        """校验调用方提供的访问令牌。

        Raises:
            AuthException: 尚未配对，或令牌缺失/错误
        """
        token = self._store.get_token()
        if not token:
            raise AuthException("Agent not paired yet")
        got = str(supplied or "")
        if not got or not hmac.compare_digest(got.encode(), token.encode()):
            raise AuthException("Invalid token")
