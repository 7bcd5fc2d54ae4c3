"""
共享的服务实例 - 确保所有API调用使用同一份存储与配对状态
"""
import logging
import threading
from typing import Optional

from .auth_service import PairingService
from .config_store import ConfigStore
from .cookie_jar_store import CookieJarStore
from .cookie_resolver import CookieResolver
from .request_executor import RequestExecutor

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_config_store: Optional[ConfigStore] = None
_pairing_service: Optional[PairingService] = None
_cookie_jar_store: Optional[CookieJarStore] = None


def get_config_store() -> ConfigStore:
    """获取共享的ConfigStore实例"""
    global _config_store
    with _lock:
        if _config_store is None:
            _config_store = ConfigStore()
            logger.debug(f"配置文件: {_config_store.path}")
        return _config_store


def get_pairing_service() -> PairingService:
    """获取共享的PairingService实例（配对码在首次创建时生成）"""
    global _pairing_service
    store = get_config_store()
    with _lock:
        if _pairing_service is None:
            _pairing_service = PairingService(store)
            _pairing_service.issue()
        return _pairing_service


def get_cookie_jar_store() -> CookieJarStore:
    global _cookie_jar_store
    with _lock:
        if _cookie_jar_store is None:
            _cookie_jar_store = CookieJarStore()
            logger.debug(f"Cookie jar 目录: {_cookie_jar_store.base_dir}")
        return _cookie_jar_store


def get_cookie_resolver() -> CookieResolver:
    return CookieResolver(get_cookie_jar_store())


def get_request_executor() -> RequestExecutor:
    return RequestExecutor(get_config_store())


def reset_shared_services():
    """丢弃所有共享实例，下次获取时按当前 settings 重新创建"""
    global _config_store, _pairing_service, _cookie_jar_store
    with _lock:
        _config_store = None
        _pairing_service = None
        _cookie_jar_store = None
