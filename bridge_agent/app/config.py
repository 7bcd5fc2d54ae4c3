import os
from typing import List
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from pathlib import Path

# 加载环境变量
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseSettings):
    """进程级配置，启动时确定，运行期间不变"""

    # 应用配置
    app_name: str = "Bhejo Agent"
    agent_id: str = "bhejo-agent"
    debug: bool = _env_flag("BHEJO_DEBUG")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # 监听配置 - 默认只绑定本机回环地址
    port: int = int(os.getenv("BHEJO_AGENT_PORT", "3131"))
    host: str = os.getenv("BHEJO_AGENT_HOST", "127.0.0.1")

    # 允许的 UI 来源（逗号分隔），localhost/127.0.0.1 始终允许
    ui_origins: str = os.getenv("BHEJO_UI_ORIGINS", "")
    allow_any_origin: bool = _env_flag("BHEJO_ALLOW_ANY_ORIGIN")

    # 数据目录 - 每个用户一份
    data_dir: str = os.getenv("BHEJO_AGENT_DIR", str(Path.home() / ".bhejo-agent"))

    # 出站请求默认值
    default_timeout_ms: int = 30000
    default_max_redirects: int = 10

    @property
    def store_json_path(self) -> str:
        return os.path.join(self.data_dir, "store.json")

    @property
    def cookie_jars_dir(self) -> str:
        return os.path.join(self.data_dir, "cookiejars")

    @property
    def extra_ui_origins(self) -> List[str]:
        return [o.strip() for o in self.ui_origins.split(",") if o.strip()]

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()

    class Config:
        env_file = ".env"
        env_prefix = "BHEJO_"
        extra = "ignore"


# 全局设置实例
settings = Settings()
