"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHATGATE_", extra="ignore")

    app_name: str = "ChatGate"
    # dev | production；production 下上游只允许 https/wss
    env: str = "dev"
    log_level: str = "info"
    # 为空时不写文件日志
    log_dir: str = "logs"
    # DEBUG 下是否打印完整请求正文；False 时只打 method/path/headers + body_size
    log_full_request_body: bool = False
    host: str = "127.0.0.1"
    port: int = 3000

    # 后端地址，不带协议，如 "127.0.0.1:8000"；URL 校验按 host 精确匹配
    backend_address: str = ""
    # 显式指定 HTTP base URL；为空时由 backend_address + env 推导
    server_url: str = ""
    default_endpoint_label: str = ""
    default_timezone: str = "Etc/UTC"

    upstream_timeout_seconds: float = Field(default=300.0, gt=0)
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20

    # CA-RAG 会话初始化
    rag_uuid: str = ""
    init_registry_backend: str = "memory"  # memory | redis
    redis_url: str = "redis://127.0.0.1:6379/0"
    redis_key_prefix: str = "chatgate"

    max_request_body_bytes: int = 5 * 1024 * 1024
    feedback_path: str = "/chat_feedback"
    enable_data_stream_endpoint: bool = True


settings = Settings()
