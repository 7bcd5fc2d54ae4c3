"""文件操作辅助工具模块"""
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional, Union


def ensure_dir(path: Union[str, Path]) -> Path:
    """确保目录存在，不存在则创建。

    Args:
        path: 目录路径

    Returns:
        Path 对象
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def safe_storage_key(name: Optional[str], default: str = "default", max_length: int = 64) -> str:
    """将调用方提供的标识转换为安全的存储键。

    只保留 [A-Za-z0-9._-]，其余字符替换为下划线，防止路径穿越。

    Args:
        name: 原始标识
        default: 为空时使用的键
        max_length: 最大长度

    Returns:
        安全的存储键
    """
    raw = str(name or default)
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", raw)[:max_length]
    # "." 与 ".." 不能作为文件名主体
    if cleaned.strip(".") == "":
        return default
    return cleaned


def read_text_safe(file_path: Union[str, Path], encoding: str = "utf-8") -> Optional[str]:
    """安全地读取文本文件。

    Args:
        file_path: 文件路径
        encoding: 编码

    Returns:
        文件内容，不存在或读取失败返回 None
    """
    try:
        with open(file_path, "r", encoding=encoding) as f:
            return f.read()
    except (OSError, UnicodeDecodeError):
        return None


def write_text_atomic(file_path: Union[str, Path], content: str, encoding: str = "utf-8") -> None:
    """原子写入文本文件：先写临时文件，再 rename 覆盖。

    失败时抛出 OSError，临时文件会被清理。
    """
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def write_json_atomic(file_path: Union[str, Path], data: Any) -> None:
    """原子写入 JSON 文件（缩进 2，保留非 ASCII 字符）"""
    write_text_atomic(file_path, json.dumps(data, ensure_ascii=False, indent=2))


def remove_file_safe(file_path: Union[str, Path]) -> bool:
    """删除文件，不存在时视为成功。

    Returns:
        文件此前是否存在
    """
    try:
        os.unlink(file_path)
        return True
    except FileNotFoundError:
        return False


def preview_text(content: Optional[str], limit: int = 500) -> str:
    """截断文本用于日志输出"""
    if not content:
        return ""
    if len(content) <= limit:
        return content
    return content[:limit] + f"...(共 {len(content)} 字符)"
