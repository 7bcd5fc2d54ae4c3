"""Agent 配置数据模型（代理 + TLS）

持久化与接口均使用 camelCase 字段名，Python 侧使用 snake_case。
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# 配置文档结构版本，结构变化时递增
CONFIG_SCHEMA_VERSION = 1

ProxyMode = Literal["off", "env", "custom", "system"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProxyAuth(CamelModel):
    enabled: bool = False
    user: str = ""
    password: str = Field(default="", alias="pass")


class CustomProxy(CamelModel):
    """自定义代理服务器"""
    protocol: Literal["http", "https"] = "http"
    host: str = "127.0.0.1"
    port: Optional[int] = Field(default=8080, ge=1, le=65535)
    auth: ProxyAuth = Field(default_factory=ProxyAuth)

    @field_validator("port", mode="before")
    @classmethod
    def _blank_port(cls, v):
        # UI 清空输入框时会传空字符串
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @field_validator("host", mode="before")
    @classmethod
    def _strip_host(cls, v):
        return str(v or "").strip()


class ProxyFor(CamelModel):
    """按请求协议启用/禁用代理"""
    http: bool = True
    https: bool = True


class TlsSettings(CamelModel):
    reject_unauthorized: bool = True
    # caPem（UI 粘贴）优先于 caPemPath（本地路径）
    ca_pem: str = ""
    ca_pem_path: str = ""


class AgentConfig(CamelModel):
    proxy_mode: ProxyMode = "off"
    custom_proxy: CustomProxy = Field(default_factory=CustomProxy)
    proxy_for: ProxyFor = Field(default_factory=ProxyFor)
    no_proxy: List[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])
    tls: TlsSettings = Field(default_factory=TlsSettings)

    @field_validator("no_proxy", mode="before")
    @classmethod
    def _split_no_proxy(cls, v):
        # 兼容逗号分隔的字符串
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v


# 嵌套段：合并时逐字段覆盖，而不是整体替换
NESTED_SECTIONS = {
    "customProxy": CustomProxy,
    "proxyFor": ProxyFor,
    "tls": TlsSettings,
}


def default_section(name: str) -> Dict[str, Any]:
    """返回某一配置段的默认值（camelCase 字典）"""
    if name in NESTED_SECTIONS:
        return NESTED_SECTIONS[name]().to_dict()
    return AgentConfig().to_dict()[name]


def merge_config_dict(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """将部分配置 patch 合并到 base 上。

    顶层字段直接覆盖；customProxy/proxyFor/tls 逐字段合并，
    customProxy.auth 同样逐字段合并。
    """
    merged = dict(base)
    for key, value in patch.items():
        if key in NESTED_SECTIONS:
            continue
        merged[key] = value

    for section in NESTED_SECTIONS:
        current = base.get(section)
        current = dict(current) if isinstance(current, dict) else {}
        incoming = patch.get(section)
        if not isinstance(incoming, dict):
            merged[section] = current
            continue

        next_section = {**current, **incoming}
        if section == "customProxy":
            auth_base = current.get("auth") if isinstance(current.get("auth"), dict) else {}
            auth_patch = incoming.get("auth") if isinstance(incoming.get("auth"), dict) else {}
            next_section["auth"] = {**auth_base, **auth_patch}
        merged[section] = next_section
    return merged
