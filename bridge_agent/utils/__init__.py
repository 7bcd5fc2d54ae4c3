"""工具模块"""
from bridge_agent.utils.file_helper import (
    ensure_dir,
    preview_text,
    read_text_safe,
    remove_file_safe,
    safe_storage_key,
    write_json_atomic,
    write_text_atomic,
)

__all__ = [
    "ensure_dir",
    "preview_text",
    "read_text_safe",
    "remove_file_safe",
    "safe_storage_key",
    "write_json_atomic",
    "write_text_atomic",
]
