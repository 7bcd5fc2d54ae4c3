from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging
from .config import settings
from .middleware.error_handler import setup_error_handlers
from .api.v1 import agent_config, auth, cookies, send
from .services.shared_services import get_config_store, get_pairing_service

# 配置日志
logging.basicConfig(
    level=getattr(logging, settings.effective_log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# 本机 UI 任意端口均允许
LOCAL_ORIGIN_REGEX = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

# 创建FastAPI应用
app = FastAPI(
    title=settings.app_name,
    description="本地网络桥接代理：代浏览器 UI 发出请求",
    version="1.0.0",
    docs_url="/docs",
    redoc_url=None
)

# CORS中间件配置
if settings.allow_any_origin:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.extra_ui_origins,
        allow_origin_regex=LOCAL_ORIGIN_REGEX,
        allow_methods=["*"],
        allow_headers=["*"],
    )

setup_error_handlers(app)

# 注册API路由
app.include_router(auth.router, tags=["pairing"])
app.include_router(agent_config.router, tags=["config"])
app.include_router(send.router, tags=["send"])
app.include_router(cookies.router, tags=["cookiejar"])


@app.on_event("startup")
async def startup_event():
    """应用启动事件：加载存储并打印配对码"""
    store = get_config_store()
    pairing = get_pairing_service()

    base_url = f"http://{settings.host}:{settings.port}"
    logger.info(f"🚀 启动 {settings.app_name}: {base_url}")
    logger.info(f"健康检查: {base_url}/health")
    if settings.host == "0.0.0.0":
        logger.info(f"已监听所有网卡，本机 UI 请使用 http://127.0.0.1:{settings.port}")
    logger.info(f"数据目录: {settings.data_dir}")
    logger.info(f"代理模式: {store.get_config().proxy_mode}")
    logger.info(f"🔑 配对码: {pairing.pair_code}")
    if settings.allow_any_origin:
        logger.warning("已允许任意来源访问 (BHEJO_ALLOW_ANY_ORIGIN)")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("🛑 正在关闭 Agent...")


def main():
    """命令行入口"""
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.effective_log_level.lower()
    )


if __name__ == "__main__":
    main()
