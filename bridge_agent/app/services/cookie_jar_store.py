"""
Cookie Jar 持久化存储

- 每个 jarId 一个 JSON 文件（文件名经过安全化处理）
- 原子写入（临时文件 + rename），同一 jar 的读改写串行执行
- 文件不存在或损坏时按空 jar 处理
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..config import settings
from bridge_agent.models.cookie import CookieParseError, CookieRecord, now_ms
from bridge_agent.utils.file_helper import (
    preview_text,
    read_text_safe,
    remove_file_safe,
    safe_storage_key,
    write_json_atomic,
)

logger = logging.getLogger(__name__)

JAR_FORMAT_VERSION = 1


def _iter_raw_cookies(parsed) -> Iterable[dict]:
    """兼容三种结构:
    {"version", "cookies": [...]} / {"jar": {host: [...]}} / [...]
    """
    if isinstance(parsed, list):
        yield from parsed
        return
    if not isinstance(parsed, dict):
        raise ValueError("jar 顶层结构无效")
    if isinstance(parsed.get("cookies"), list):
        yield from parsed["cookies"]
        return
    by_host = parsed.get("jar") if isinstance(parsed.get("jar"), dict) else parsed
    for cookies in by_host.values():
        if isinstance(cookies, list):
            yield from cookies


class CookieJarStore:
    """按 jarId 持久化 cookie"""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.cookie_jars_dir)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, jar_id: str) -> threading.RLock:
        key = safe_storage_key(jar_id)
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    def jar_path(self, jar_id: Optional[str]) -> Path:
        return self.base_dir / f"{safe_storage_key(jar_id)}.json"

    def load(self, jar_id: Optional[str] = "default") -> List[CookieRecord]:
        """读取 jar；不存在或损坏时返回空列表"""
        path = self.jar_path(jar_id)
        with self._lock_for(jar_id):
            raw_text = read_text_safe(path)
            if raw_text is None:
                return []

            try:
                raw_cookies = list(_iter_raw_cookies(json.loads(raw_text)))
            except ValueError as e:
                logger.warning(f"Cookie jar 文件已损坏 ({e})，按空 jar 处理: {path} 内容: {preview_text(raw_text)}")
                return []

            cookies = []
            for raw in raw_cookies:
                if not isinstance(raw, dict):
                    continue
                try:
                    cookies.append(CookieRecord.from_dict(raw))
                except (CookieParseError, TypeError, ValueError) as e:
                    logger.debug(f"跳过无效 cookie 记录: {raw!r}: {e}")
            return cookies

    def save(self, jar_id: Optional[str], cookies: List[CookieRecord]):
        path = self.jar_path(jar_id)
        payload = {
            "version": JAR_FORMAT_VERSION,
            "jarId": safe_storage_key(jar_id),
            "savedAt": datetime.now().isoformat(),
            "cookies": [c.to_dict() for c in cookies],
        }
        with self._lock_for(jar_id):
            write_json_atomic(path, payload)

    def apply_set_cookie(
        self,
        jar_id: Optional[str],
        url: str,
        set_cookies: Optional[List[str]],
        now: Optional[int] = None,
    ) -> List[CookieRecord]:
        """依次应用 Set-Cookie 指令，单条解析失败时忽略，最后统一落盘一次"""
        if now is None:
            now = now_ms()

        with self._lock_for(jar_id):
            cookies = [c for c in self.load(jar_id) if not c.is_expired(now)]
            applied = 0
            for directive in set_cookies or []:
                if not directive:
                    continue
                try:
                    cookie = CookieRecord.from_set_cookie(directive, url, now=now)
                except CookieParseError as e:
                    logger.debug(f"忽略无效 Set-Cookie: {e}")
                    continue

                cookies = [c for c in cookies if c.key != cookie.key]
                # 已过期的指令等同于删除
                if not cookie.is_expired(now):
                    cookies.append(cookie)
                applied += 1

            self.save(jar_id, cookies)
            logger.info(f"Cookie jar {safe_storage_key(jar_id)}: 应用 {applied} 条 Set-Cookie，当前 {len(cookies)} 条")
            return cookies

    def list_cookies(self, jar_id: Optional[str] = "default", now: Optional[int] = None) -> List[CookieRecord]:
        """返回未过期的 cookie"""
        if now is None:
            now = now_ms()
        return [c for c in self.load(jar_id) if not c.is_expired(now)]

    def clear(self, jar_id: Optional[str]) -> bool:
        """删除整个 jar"""
        with self._lock_for(jar_id):
            existed = remove_file_safe(self.jar_path(jar_id))
        logger.info(f"Cookie jar {safe_storage_key(jar_id)} 已清空")
        return existed
