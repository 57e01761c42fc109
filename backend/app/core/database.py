from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.core.config import settings


# 所有模型的 ORM 基类
class Base(DeclarativeBase):
    pass


# 创建数据库引擎（未设置 DATABASE_URL 时使用 SQLite）
def _build_engine():
    if settings.database_url:
        return create_engine(settings.database_url, future=True, pool_pre_ping=True)
    settings.ensure_dirs()
    return create_engine(
        f"sqlite:///{settings.sqlite_path}",
        connect_args={"check_same_thread": False},
        future=True,
    )


# 全局引擎
engine = _build_engine()
# 会话工厂
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


# 创建数据表
def init_db(bind=None) -> None:
    from app.models import (  # noqa: F401
        chapter,
        import_job,
        media,
        story,
    )

    target = bind or engine
    # PostgreSQL 下多个 worker 串行执行 create_all
    if target.dialect.name.startswith("postgres"):
        lock_id = 48151623
        with target.connect() as conn:
            conn.execute(text("SELECT pg_advisory_lock(:lock_id)"), {"lock_id": lock_id})
            try:
                Base.metadata.create_all(bind=conn)
            finally:
                conn.execute(text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": lock_id})
            conn.commit()
    else:
        Base.metadata.create_all(bind=target)


# FastAPI 依赖：数据库会话
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
