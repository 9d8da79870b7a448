"""FastAPI entrypoint for the public exam participation service."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from examhub.config import settings
from examhub.database import create_db_and_tables
from examhub.errors import ExamHubError, RateLimited
from examhub.logging_config import configure_logging
from examhub.routers import admin as admin_router_module
from examhub.routers import public as public_router_module
from examhub.routers import student as student_router_module
from examhub.tasks import build_scheduler

logger = logging.getLogger(__name__)

app = FastAPI(title="ExamHub Public Exam Service")


@app.exception_handler(ExamHubError)
async def examhub_error_handler(request: Request, exc: ExamHubError):
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers or None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "code": "validation_error"},
    )


app.include_router(public_router_module.router, prefix="/api/public", tags=["public"])
app.include_router(student_router_module.router, prefix="/api/student", tags=["student"])
app.include_router(admin_router_module.router, prefix="/api/admin", tags=["admin"])


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    create_db_and_tables()
    scheduler = build_scheduler()
    if scheduler is not None:
        scheduler.start()
    app.state.scheduler = scheduler
    logger.info("%s started", settings.APP_NAME)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/health")
def health():
    return {"status": "ok"}
