from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    _project_root = Path(__file__).parent.parent

    model_config = SettingsConfigDict(
        env_file=str(_project_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # HTTP timeouts
    upstream_timeout: float = Field(
        600.0,
        alias="UPSTREAM_TIMEOUT",
        description="上游读取超时（秒）；后端停止发送但不断开连接时，流式读取在该时间后结束",
        gt=0,
    )
    upstream_connect_timeout: float = Field(
        10.0,
        alias="UPSTREAM_CONNECT_TIMEOUT",
        description="与上游建立连接的超时时间（秒）",
        gt=0,
    )

    # Browser-mimic headers for upstream (掩护功能)
    mask_as_browser: bool = Field(False, alias="MASK_AS_BROWSER")
    mask_user_agent: str = Field(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36",
        alias="MASK_USER_AGENT",
    )
    mask_origin: str | None = Field(None, alias="MASK_ORIGIN")
    mask_referer: str | None = Field(None, alias="MASK_REFERER")

    # Provider registry
    default_provider: str = Field(
        "dev",
        alias="DEFAULT_PROVIDER",
        description="model 字段未带 provider 前缀时使用的 provider id",
    )
    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    openai_base_url: str = Field("https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    anthropic_api_key: str | None = Field(None, alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str = Field(
        "https://api.anthropic.com/v1", alias="ANTHROPIC_BASE_URL"
    )
    google_api_key: str | None = Field(None, alias="GOOGLE_API_KEY")
    google_base_url: str = Field(
        "https://generativelanguage.googleapis.com/v1beta", alias="GOOGLE_BASE_URL"
    )
    ollama_base_url: str = Field("http://localhost:11434/api", alias="OLLAMA_BASE_URL")

    # Signed internal backend ("dev" provider)
    dev_api_endpoint: str = Field(
        "http://localhost:8080/api/chat",
        alias="INTERNAL_DEV_API_ENDPOINT",
        description="签名鉴权的内部对话后端地址（完整 URL）",
    )
    dev_device_id: str = Field(
        "",
        alias="DEV_DEVICE_ID",
        description="签名头 device-id，同时参与签名计算",
    )
    dev_session_id: str | None = Field(
        None,
        alias="DEV_SESSION_ID",
        description="可选的 sid 请求头；为空时不发送",
    )
    dev_os_type: str = Field("3", alias="DEV_OS_TYPE")
    dev_plugin_for: str = Field("vscode", alias="DEV_PLUGIN_FOR")
    signer: str | None = Field(
        None,
        alias="SIGNER",
        description="签名函数的导入路径，形如 'my_pkg.signing:sign'；签名 provider 必须配置",
    )

    # Reasoning ("r" event) buffering thresholds
    reasoning_flush_chars: int = Field(
        50,
        alias="REASONING_FLUSH_CHARS",
        description="推理片段缓冲超过该长度（字符）时立即刷新",
        ge=0,
    )
    reasoning_flush_interval_ms: int = Field(
        100,
        alias="REASONING_FLUSH_INTERVAL_MS",
        description="距离上次刷新超过该时长（毫秒）时立即刷新",
        ge=0,
    )

    # Application log level for our chat_gateway logger.
    # Can be overridden via LOG_LEVEL env var, e.g. "DEBUG" while debugging.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: str | None = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Asia/Shanghai'. Defaults to system local time.",
    )
    log_dir: str = Field(
        "logs",
        alias="LOG_DIR",
        description="日志目录（相对路径以项目根目录为基准）；默认 logs",
    )
    log_backup_days: int = Field(
        7,
        alias="LOG_BACKUP_DAYS",
        description="保留最近 N 天的日志目录；0 表示不清理",
        ge=0,
    )


settings = Settings()  # Reads from environment if available
