from __future__ import annotations

import logging
import logging.config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.responses import JSONResponse

from app.api.routes import imports_router
from app.core.config import settings
from app.core.database import init_db
from app.core.errors import ImportPipelineError, NumberConflictError

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": settings.log_level.upper(),
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

settings.ensure_dirs()

# 应用入口
app = FastAPI(title="Chapter Import", root_path=settings.root_path or "")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 导入流程错误自带 HTTP 状态码
@app.exception_handler(ImportPipelineError)
async def import_error_handler(request: Request, exc: ImportPipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Import request failed: {request.method} {request.url}: {exc.message}")
    content = {"detail": exc.message, "errors": exc.errors}
    if isinstance(exc, NumberConflictError):
        content["conflicts"] = [float(number) for number in exc.conflicts]
    return JSONResponse(status_code=exc.status_code, content=content)


api_prefix = settings.api_prefix
if api_prefix is None:
    api_prefix = "" if (settings.root_path or "").strip() else "/api"
api_prefix = api_prefix.rstrip("/")
app.include_router(imports_router, prefix=f"{api_prefix}/imports", tags=["imports"])

# 迁移后的章节图片
app.mount(settings.media_url_path.rstrip("/") or "/media", StaticFiles(directory=settings.media_dir), name="media")


@app.on_event("startup")
def on_startup() -> None:
    init_db()
