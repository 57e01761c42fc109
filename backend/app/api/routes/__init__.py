from app.api.routes.imports import router as imports_router

__all__ = ["imports_router"]
