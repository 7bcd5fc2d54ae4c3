"""出站请求数据模型"""
from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from bridge_agent.models.agent_config import CamelModel


class KeyValueRow(CamelModel):
    """请求头 / 查询参数 / 表单字段的一行"""
    key: Any = ""
    value: Any = ""
    enabled: bool = True

    @property
    def clean_key(self) -> str:
        return str(self.key if self.key is not None else "").strip()

    @property
    def clean_value(self) -> str:
        return "" if self.value is None else str(self.value)


class BodySpec(CamelModel):
    """带标签的请求体"""
    # none | raw | json | form-url，其他值按 none 处理
    mode: str = "none"
    raw: Optional[str] = None
    content_type: str = ""
    json_value: Any = Field(default=None, alias="json")
    items: List[KeyValueRow] = Field(default_factory=list)


class SendRequest(CamelModel):
    method: str = "GET"
    url: str
    headers: Union[List[KeyValueRow], Dict[str, Any]] = Field(default_factory=list)
    params: List[KeyValueRow] = Field(default_factory=list)
    body: Optional[BodySpec] = None
    timeout_ms: Optional[float] = Field(default=None, ge=0)
    follow_redirects: bool = True
    max_redirects: Optional[int] = Field(default=None, ge=0)
