"""
配置存储服务 - 持久化 token 与 Agent 配置（代理 + TLS）

文档结构: {"version": 1, "token": "...", "config": {...AgentConfig}}
读取时逐段合并默认值；文件缺失或损坏时记录日志后重置为默认值并立即回写。
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from ..config import settings
from ..middleware.error_handler import ValidationException, pydantic_errors
from bridge_agent.models.agent_config import (
    CONFIG_SCHEMA_VERSION,
    AgentConfig,
    default_section,
    merge_config_dict,
)
from bridge_agent.utils.file_helper import preview_text, read_text_safe, write_json_atomic

logger = logging.getLogger(__name__)


def default_document() -> Dict[str, Any]:
    return {
        "version": CONFIG_SCHEMA_VERSION,
        "token": "",
        "config": AgentConfig().to_dict(),
    }


def normalize_config(raw: Any) -> Tuple[AgentConfig, bool]:
    """将持久化的配置规范化为 AgentConfig。

    Returns:
        (配置, 是否有配置段因无效被重置)
    """
    data = raw if isinstance(raw, dict) else {}
    merged = merge_config_dict(AgentConfig().to_dict(), data)
    repaired = not isinstance(raw, dict) and raw is not None

    # 每轮把出错的顶层段重置为默认值，段数有限，循环必然结束
    for _ in range(len(merged) + 1):
        try:
            return AgentConfig.model_validate(merged), repaired
        except ValidationError as e:
            bad_sections = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            if not bad_sections:
                break
            for section in bad_sections:
                logger.warning(f"配置段 {section} 无效，已重置为默认值: {merged.get(section)!r}")
                merged[section] = default_section(section)
            repaired = True

    return AgentConfig(), True


class ConfigStore:
    """单文件配置存储（token + AgentConfig）"""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.store_json_path)
        self._lock = threading.RLock()

    def _write(self, document: Dict[str, Any]):
        write_json_atomic(self.path, document)

    def load(self) -> Dict[str, Any]:
        """读取配置文档，返回规范化后的完整文档"""
        with self._lock:
            raw_text = read_text_safe(self.path)
            if raw_text is None:
                if self.path.exists():
                    logger.warning(f"配置文件不可读，已重置为默认值: {self.path}")
                else:
                    logger.info(f"配置文件不存在，创建默认配置: {self.path}")
                document = default_document()
                self._write(document)
                return document

            try:
                parsed = json.loads(raw_text)
                if not isinstance(parsed, dict):
                    raise ValueError("顶层不是对象")
            except ValueError as e:
                logger.warning(
                    f"配置文件已损坏 ({e})，将以默认值覆盖。丢弃的内容: {preview_text(raw_text)}"
                )
                document = default_document()
                self._write(document)
                return document

            config, repaired = normalize_config(parsed.get("config"))
            token = parsed.get("token")
            document = {
                "version": CONFIG_SCHEMA_VERSION,
                "token": token if isinstance(token, str) else "",
                "config": config.to_dict(),
            }
            if repaired:
                logger.warning(f"配置文件部分内容无效，已修复并回写。原始内容: {preview_text(raw_text)}")
                self._write(document)
            return document

    def get_config(self) -> AgentConfig:
        return AgentConfig.model_validate(self.load()["config"])

    def save(self, partial: Dict[str, Any]) -> AgentConfig:
        """合并部分配置并持久化，返回合并后的配置。

        Raises:
            ValidationException: 合并结果不是合法配置
        """
        if not isinstance(partial, dict):
            raise ValidationException("Missing config object")

        with self._lock:
            document = self.load()
            merged = merge_config_dict(document["config"], partial)
            try:
                config = AgentConfig.model_validate(merged)
            except ValidationError as e:
                raise ValidationException("Invalid config", errors=pydantic_errors(e.errors()))

            document["config"] = config.to_dict()
            self._write(document)
            logger.info(f"配置已更新: proxyMode={config.proxy_mode}")
            return config

    def get_token(self) -> str:
        return self.load().get("token") or ""

    def set_token(self, token: str) -> str:
        with self._lock:
            document = self.load()
            document["token"] = token
            self._write(document)
            return token
