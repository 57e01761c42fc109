from __future__ import annotations

import os
from pydantic_settings import BaseSettings


# 应用配置：环境变量及默认值
class Settings(BaseSettings):
    # 运行环境标识（dev / prod）
    app_env: str = "dev"
    # 反向代理子路径下的 FastAPI root_path
    root_path: str = ""
    # API 前缀（为 None 时由 root_path 推导）
    api_prefix: str | None = None
    # 运行时数据根目录（上传文件、媒体、数据库）
    data_dir: str = "data"
    # 待处理上传源文件的临时目录
    upload_dir: str = "data/uploads"
    # 持久媒体目录（迁移后的章节图片）
    media_dir: str = "data/media"
    # 媒体目录对外访问的 URL 前缀
    media_url_path: str = "/media"
    # 媒体链接的绝对基础 URL（为空时使用相对地址）
    media_base_url: str = ""
    # 缩略图边长（像素），作为缩放参数附加在缩略图链接上
    thumbnail_size: int = 300
    # SQLite 数据库文件（默认本地文件）
    sqlite_path: str = "data/app.db"
    # 可选数据库 URL（PostgreSQL 等），优先于 sqlite_path
    database_url: str | None = None

    # 根日志级别
    log_level: str = "INFO"

    # 上传大小限制（字节）
    single_upload_max_bytes: int = 10 * 1024 * 1024
    batch_upload_max_bytes: int = 5 * 1024 * 1024
    document_upload_max_bytes: int = 25 * 1024 * 1024

    # 计算预计阅读时长使用的阅读速度
    words_per_minute: int = 500
    # 单个批量表格允许的最大行数
    batch_max_rows: int = 50
    # 导入历史返回的任务数量
    import_history_limit: int = 50

    # 允许的前端来源（逗号分隔）
    cors_origins: str = "http://localhost:3000"

    # JWT 校验：HS* 令牌的对称密钥
    jwt_secret: str | None = None
    # 非对称令牌的 JWKS 地址
    jwt_jwks_url: str | None = None
    # 期望的 audience / issuer
    jwt_audience: str | None = None
    jwt_issuer: str | None = None
    # 存放用户角色的 claim，以及视为管理员的角色
    jwt_role_claim: str = "role"
    admin_roles: str = "admin,superadmin"

    # Pydantic Settings 配置
    class Config:
        env_file = (
            os.getenv("APP_ENV_FILE") or "config/.env",
            "backend/config/.env",
            ".env",
        )
        case_sensitive = False
        extra = "ignore" if os.getenv("APP_ENV", "dev").lower() == "dev" else "forbid"

    # CORS 来源列表，供中间件使用
    @property
    def cors_origin_list(self) -> list[str]:
        return [item.strip() for item in self.cors_origins.split(",") if item.strip()]

    @property
    def admin_role_list(self) -> list[str]:
        return [item.strip().lower() for item in self.admin_roles.split(",") if item.strip()]

    # 生成公开链接时加在媒体存储键前的前缀
    @property
    def media_url_prefix(self) -> str:
        return f"{self.media_base_url.rstrip('/')}{self.media_url_path.rstrip('/')}"

    # 启动时创建运行目录
    def ensure_dirs(self) -> None:
        for path in (
            self.data_dir,
            self.upload_dir,
            self.media_dir,
            os.path.dirname(self.sqlite_path),
        ):
            if path:
                os.makedirs(path, exist_ok=True)


# 全局配置实例
settings = Settings()
