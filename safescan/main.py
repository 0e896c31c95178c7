from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from safescan.api_routers.v1 import api_router
from safescan.features.health.routes.health import router as health_router
from safescan.platform.config import settings
from safescan.platform.exceptions import add_exception_handlers


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="URL safety scan orchestration",
        version="0.1.0",
        debug=settings.DEBUG,
    )

    # Root endpoint for basic info
    @app.get("/", tags=["Info"])
    def root():
        return {
            "app_name": f"{settings.APP_NAME} API",
            "description": "Queue-driven, sandboxed URL safety scans.",
            "version": "0.1.0",
            "docs_url": "/docs",
            "api_base": "/api/v1",
        }

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()
