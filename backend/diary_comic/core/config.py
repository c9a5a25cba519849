from functools import lru_cache
from pathlib import Path
from typing import Optional
import sys

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url


class Settings(BaseSettings):
    """应用全局配置，所有可调参数集中于此，统一加载自环境变量。"""

    # -------------------- 基础应用配置 --------------------
    app_name: str = Field(default="Diary Comic API", description="FastAPI 文档标题")
    environment: str = Field(default="development", description="当前环境标识")
    debug: bool = Field(default=False, description="是否开启调试模式")
    logging_level: str = Field(
        default="INFO",
        env="LOGGING_LEVEL",
        description="应用日志级别",
    )

    # -------------------- 数据库配置 --------------------
    database_url: Optional[str] = Field(
        default=None,
        env="DATABASE_URL",
        description="完整的数据库连接串，填入后覆盖下方数据库配置"
    )
    db_provider: str = Field(
        default="sqlite",
        env="DB_PROVIDER",
        description="数据库类型，仅支持 mysql 或 sqlite"
    )
    mysql_host: str = Field(default="localhost", env="MYSQL_HOST", description="MySQL 主机名")
    mysql_port: int = Field(default=3306, env="MYSQL_PORT", description="MySQL 端口")
    mysql_user: str = Field(default="root", env="MYSQL_USER", description="MySQL 用户名")
    mysql_password: str = Field(default="", env="MYSQL_PASSWORD", description="MySQL 密码")
    mysql_database: str = Field(default="diary_comic", env="MYSQL_DATABASE", description="MySQL 数据库名称")

    # -------------------- 故事分析（LLM）配置 --------------------
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY", description="故事分析使用的 API Key")
    openai_base_url: Optional[HttpUrl] = Field(
        default=None,
        env="OPENAI_API_BASE_URL",
        validation_alias=AliasChoices("OPENAI_API_BASE_URL", "OPENAI_BASE_URL"),
        description="LLM API Base URL",
    )
    analysis_model: str = Field(default="gpt-4o-mini", env="ANALYSIS_MODEL", description="故事分析模型名称")
    analysis_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        env="ANALYSIS_TEMPERATURE",
        description="多格漫画场景分析的temperature值",
    )
    poster_temperature: float = Field(
        default=0.8,
        ge=0.0,
        le=2.0,
        env="POSTER_TEMPERATURE",
        description="海报构思的temperature值（创造性更高）",
    )
    analysis_max_tokens: int = Field(default=1000, ge=100, env="ANALYSIS_MAX_TOKENS", description="分析调用的最大输出token")
    analysis_timeout: float = Field(default=120.0, gt=0, env="ANALYSIS_TIMEOUT", description="分析调用超时（秒）")
    name_match_strategy: str = Field(
        default="exact",
        env="NAME_MATCH_STRATEGY",
        description="角色名标记匹配策略，支持 exact 或 case_insensitive",
    )

    # -------------------- 图片生成配置 --------------------
    image_provider: str = Field(
        default="flux_kontext",
        env="IMAGE_PROVIDER",
        description="场景渲染使用的图片供应商类型",
    )
    flux_api_key: Optional[str] = Field(default=None, env="FLUX_API_KEY", description="Flux API Key（x-key 请求头）")
    flux_base_url: str = Field(default="https://api.bfl.ai/v1", env="FLUX_BASE_URL", description="Flux API 地址")
    flux_endpoint: str = Field(default="flux-kontext-pro", env="FLUX_ENDPOINT", description="Flux 提交端点名称")
    image_poll_interval: float = Field(
        default=1.0,
        gt=0,
        env="IMAGE_POLL_INTERVAL",
        description="渲染任务首次轮询间隔（秒）",
    )
    image_poll_backoff: float = Field(
        default=1.5,
        ge=1.0,
        env="IMAGE_POLL_BACKOFF",
        description="轮询间隔指数退避系数",
    )
    image_poll_max_interval: float = Field(
        default=8.0,
        gt=0,
        env="IMAGE_POLL_MAX_INTERVAL",
        description="轮询间隔上限（秒）",
    )
    image_poll_timeout: float = Field(
        default=300.0,
        gt=0,
        env="IMAGE_POLL_TIMEOUT",
        description="单个渲染任务的最长等待时间（秒）",
    )
    compose_api_base_url: Optional[str] = Field(
        default=None,
        env="COMPOSE_API_BASE_URL",
        description="多图合成模式使用的 OpenAI 兼容接口地址",
    )
    compose_api_key: Optional[str] = Field(default=None, env="COMPOSE_API_KEY", description="多图合成模式 API Key")
    compose_model: str = Field(
        default="gemini-2.5-flash-image-preview",
        env="COMPOSE_MODEL",
        description="多图合成模式模型名称",
    )
    image_max_concurrent: int = Field(
        default=2,
        ge=1,
        le=10,
        env="IMAGE_MAX_CONCURRENT",
        description="图片生成接口的最大并发请求数",
    )
    scene_render_concurrency: int = Field(
        default=1,
        ge=1,
        le=5,
        env="SCENE_RENDER_CONCURRENCY",
        description="单个漫画任务内并行渲染的场景数，1 表示顺序渲染",
    )
    image_public_base: str = Field(
        default="/api/images",
        env="IMAGE_PUBLIC_BASE",
        description="已保存图片的访问地址前缀",
    )

    # -------------------- 角色拼接配置 --------------------
    compositor_spacing: int = Field(default=10, ge=0, env="COMPOSITOR_SPACING", description="角色拼接间距（像素）")
    compositor_background: str = Field(default="white", env="COMPOSITOR_BACKGROUND", description="拼接画布背景色")
    compositor_direction: str = Field(
        default="horizontal",
        env="COMPOSITOR_DIRECTION",
        description="拼接方向，支持 horizontal 或 vertical",
    )

    # -------------------- 进度推送配置 --------------------
    progress_buffer_size: int = Field(
        default=64,
        ge=1,
        env="PROGRESS_BUFFER_SIZE",
        description="进度事件缓冲区大小，满时丢弃最旧事件",
    )

    model_config = SettingsConfigDict(
        env_file=(".env", "backend/.env"),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: Optional[str]) -> Optional[str]:
        """当环境变量中提供 DATABASE_URL 时，原样返回，便于自定义。"""
        return value.strip() if isinstance(value, str) and value.strip() else value

    @field_validator("db_provider", mode="before")
    @classmethod
    def _normalize_db_provider(cls, value: Optional[str]) -> str:
        """统一数据库类型大小写，并限制为受支持的驱动。"""
        candidate = (value or "sqlite").strip().lower()
        if candidate not in {"mysql", "sqlite"}:
            raise ValueError("DB_PROVIDER 仅支持 mysql 或 sqlite")
        return candidate

    @field_validator("logging_level", mode="before")
    @classmethod
    def _normalize_logging_level(cls, value: Optional[str]) -> str:
        """规范日志级别配置。"""
        candidate = (value or "INFO").strip().upper()
        valid_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}
        if candidate not in valid_levels:
            raise ValueError("LOGGING_LEVEL 仅支持 CRITICAL/ERROR/WARNING/INFO/DEBUG/NOTSET")
        return candidate

    @field_validator("name_match_strategy", mode="before")
    @classmethod
    def _normalize_name_match_strategy(cls, value: Optional[str]) -> str:
        """限制角色名匹配策略的取值范围。"""
        candidate = (value or "exact").strip().lower().replace("-", "_")
        if candidate not in {"exact", "case_insensitive"}:
            raise ValueError("NAME_MATCH_STRATEGY 仅支持 exact 或 case_insensitive")
        return candidate

    @field_validator("compositor_direction", mode="before")
    @classmethod
    def _normalize_compositor_direction(cls, value: Optional[str]) -> str:
        """限制拼接方向。"""
        candidate = (value or "horizontal").strip().lower()
        if candidate not in {"horizontal", "vertical"}:
            raise ValueError("COMPOSITOR_DIRECTION 仅支持 horizontal 或 vertical")
        return candidate

    @property
    def sqlalchemy_database_uri(self) -> str:
        """生成 SQLAlchemy 兼容的异步连接串，数据库类型由 DB_PROVIDER 控制。"""
        if self.database_url:
            url = make_url(self.database_url)
            database = (url.database or "").strip("/") if url.get_backend_name() != "sqlite" else url.database
            normalized = URL.create(
                drivername=url.drivername,
                username=url.username,
                password=url.password,
                host=url.host,
                port=url.port,
                database=database or None,
                query=url.query,
            )
            return normalized.render_as_string(hide_password=False)

        if self.db_provider == "sqlite":
            # SQLite 固定使用 storage/diary_comic.db，并转换为绝对路径以避免运行目录差异
            db_path = (self.storage_dir / "diary_comic.db").resolve()
            return f"sqlite+aiosqlite:///{db_path}"

        # MySQL 分支：统一对密码进行 URL 编码，避免特殊字符破坏连接串
        from urllib.parse import quote_plus

        encoded_password = quote_plus(self.mysql_password)
        database = (self.mysql_database or "").strip("/")
        return (
            f"mysql+asyncmy://{self.mysql_user}:{encoded_password}"
            f"@{self.mysql_host}:{self.mysql_port}/{database}"
        )

    @property
    def is_sqlite_backend(self) -> bool:
        """辅助属性：判断当前连接串是否指向 SQLite，用于差异化初始化流程。"""
        return make_url(self.sqlalchemy_database_uri).get_backend_name() == "sqlite"

    @property
    def storage_dir(self) -> Path:
        """存储目录根路径（backend/storage）"""
        return Path(__file__).resolve().parents[2] / "storage"

    @property
    def generated_images_dir(self) -> Path:
        """生成图片存储目录"""
        return self.storage_dir / "generated_images"


@lru_cache
def get_settings() -> Settings:
    """使用 LRU 缓存确保配置只初始化一次，减少 IO 与解析开销。"""
    return Settings()


def reload_settings() -> Settings:
    """重新加载配置，清除缓存并返回新的配置实例。

    用于热更新场景，当.env文件被修改后调用此函数可立即生效。
    同时会更新当前模块中的全局settings变量。
    """
    get_settings.cache_clear()
    new_settings = get_settings()

    current_module = sys.modules[__name__]
    setattr(current_module, 'settings', new_settings)

    return new_settings


settings = get_settings()
