# gatekeeper/app/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from gatekeeper.app.api.v1.router import api_router
from gatekeeper.app.core.config import settings
from gatekeeper.app.core.logging import configure_logging
from gatekeeper.app.db.base import AsyncSessionLocal, Base, engine
from gatekeeper.app.services.container import IdentityServices, build_services
from gatekeeper.app.services.user_store import SqlAlchemyUserStore

# --- Import models so SQLAlchemy registers the tables ---
from gatekeeper.app.models import user  # noqa: F401


def create_app(services: Optional[IdentityServices] = None) -> FastAPI:
    """Build the application. Passing `services` skips database setup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = services
        if container is None:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            container = build_services(settings, SqlAlchemyUserStore(AsyncSessionLocal))
        app.state.services = container
        await container.start()
        yield
        await container.shutdown()

    configure_logging()
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )

    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME} identity recovery API"}

    return app


app = create_app()
