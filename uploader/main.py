from fastapi import FastAPI

from uploader.api.v1.router import api_router
from uploader.core.config import get_settings
from uploader.exception import register_exception_handlers
from uploader.middleware import BearerAuthMiddleware


def create_application() -> FastAPI:
    settings = get_settings()
    application = FastAPI(title=settings.project_name)

    register_exception_handlers(application)
    application.add_middleware(BearerAuthMiddleware)
    application.include_router(api_router, prefix=settings.api_prefix)

    @application.get("/healthz", tags=["health"])
    async def healthcheck():
        """Liveness check for load balancers."""
        return {"status": "ok"}

    return application


app = create_application()
