import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from hookcms.config import settings
from hookcms.context import AppContext
from hookcms.database import AsyncSessionLocal, Base, engine
from hookcms.exception_handlers import register_exception_handlers
from hookcms.hooks import Hooks
from hookcms.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from hookcms.middleware.rate_limit import configure_rate_limiting
from hookcms.routes import (
    auth,
    capabilities,
    dashboard,
    health,
    jobs,
    oauth,
    options,
    plugins,
    post_types,
    posts,
    roles,
    taxonomies,
    terms,
    themes,
    users,
)
from hookcms.seeds import run_seeds
from hookcms.services.scheduler import register_core_tasks

setup_structured_logging(settings.log_level, settings.log_json)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up %s %s", settings.app_name, settings.app_version)
    if settings.debug or settings.database_url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (if not existing).")

    async with AsyncSessionLocal() as db:
        await run_seeds(db)

    context = AppContext()
    app.state.context = context
    register_core_tasks(context.scheduler)

    # Boot active extensions once so their startup hooks and scheduled tasks run
    async with AsyncSessionLocal() as db:
        await Hooks(context, db).init()

    if settings.scheduler_enabled:
        await context.scheduler.start()

    yield

    logger.info("Shutting down the application...")
    if context.scheduler.running:
        await context.scheduler.stop()
    await engine.dispose()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="A headless CMS with hooks, plugins and themes",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    configure_rate_limiting(app)
    register_exception_handlers(app)

    # Fixed prefixes first; the post type catch-all routes go last
    app.include_router(health.router, prefix=API_PREFIX)
    app.include_router(auth.router, prefix=f"{API_PREFIX}/auth")
    app.include_router(oauth.router, prefix=f"{API_PREFIX}/oauth")
    app.include_router(users.router, prefix=f"{API_PREFIX}/users")
    app.include_router(roles.router, prefix=f"{API_PREFIX}/roles")
    app.include_router(capabilities.router, prefix=f"{API_PREFIX}/capabilities")
    app.include_router(options.router, prefix=f"{API_PREFIX}/options")
    app.include_router(dashboard.router, prefix=f"{API_PREFIX}/dashboard")
    app.include_router(post_types.router, prefix=f"{API_PREFIX}/post-types")
    app.include_router(plugins.router, prefix=f"{API_PREFIX}/plugins")
    app.include_router(themes.router, prefix=f"{API_PREFIX}/themes")
    app.include_router(jobs.router, prefix=f"{API_PREFIX}/jobs")
    app.include_router(taxonomies.router, prefix=API_PREFIX)
    app.include_router(terms.router, prefix=API_PREFIX)
    app.include_router(posts.router, prefix=API_PREFIX)

    app.mount("/uploads", StaticFiles(directory=settings.content_dir / "uploads", check_dir=False), name="uploads")
    if settings.admin_dist_dir.is_dir():
        app.mount("/admin", StaticFiles(directory=settings.admin_dist_dir, html=True), name="admin")

    return app


app = create_app()


@app.get("/", tags=["Root"])
async def root():
    return {"message": f"Welcome to the {settings.app_name} API"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
