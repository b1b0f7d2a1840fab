"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS,
request logging), registers the exception handlers and includes all API
routers. It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from evaldesk import __version__
from evaldesk.core.database import init_db
from evaldesk.core.logging_config import get_logger, setup_logging
from evaldesk.core.monitoring import initialize_logfire

from .api.v1 import (
    admin_archive,
    admin_statistics,
    auth,
    composition,
    evaluations,
    gradings,
    groups,
    health,
    questions,
    student,
    users,
)
from .core import constant
from .core.config import settings
from .exception_handlers import setup_exception_handlers
from .middleware import RequestLoggingMiddleware

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates missing tables on startup. Open server-sent event streams end
    with the process.
    """
    # Startup
    try:
        logger.info("Starting up evaldesk server...")
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    # Shutdown
    logger.info("Shutting down evaldesk server...")


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    evaldesk Server API

    Backend of the evaluation platform: question banks, evaluations and their
    lifecycle, student participation with sandboxed code and SQL, grading,
    results export, archival and purge of student data.
    """,
    version=__version__,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

cors = settings.cors
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors.origins,
    allow_credentials=cors.allow_credentials,
    allow_methods=cors.allow_methods,
    allow_headers=cors.allow_headers,
)
app.add_middleware(RequestLoggingMiddleware)

setup_exception_handlers(app)
initialize_logfire(app)

api = constant.API_V1_STR

app.include_router(health.router, tags=["health"])
app.include_router(auth.router, prefix=api, tags=["auth"])
# Student routes first: "/users/evaluations/..." must not be read as a group scope
app.include_router(student.router, prefix=f"{api}/users/evaluations", tags=["student"])
app.include_router(users.router, prefix=f"{api}/users", tags=["users"])
app.include_router(groups.router, prefix=f"{api}/groups", tags=["groups"])
app.include_router(admin_archive.router, prefix=f"{api}/admin/archive", tags=["admin"])
app.include_router(admin_statistics.router, prefix=f"{api}/admin/statistics", tags=["admin"])
app.include_router(questions.router, prefix=api + "/{group_scope}/questions", tags=["questions"])
app.include_router(evaluations.router, prefix=api + "/{group_scope}/evaluations", tags=["evaluations"])
app.include_router(
    composition.router,
    prefix=api + "/{group_scope}/evaluations/{evaluation_id}/composition",
    tags=["composition"],
)
app.include_router(gradings.router, prefix=api + "/{group_scope}", tags=["gradings"])
