from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .errors import InvalidState, InvalidUpload, LimitExceeded, NotFound, RenderFailure
from .routes_content import router as content_router
from .routes_ops import router as ops_router
from .routes_projects import router as projects_router
from .routes_publish import router as publish_router
from .routes_scheduler import router as scheduler_router
from .settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("app")

app = FastAPI(title="Content Factory")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(InvalidState)
async def invalid_state_handler(request: Request, exc: InvalidState):
    return JSONResponse({"detail": str(exc)}, status_code=409)


@app.exception_handler(LimitExceeded)
async def limit_exceeded_handler(request: Request, exc: LimitExceeded):
    return JSONResponse(
        {
            "detail": str(exc),
            "estimated_combinations": exc.estimated,
            "max_combinations": exc.ceiling,
        },
        status_code=422,
    )


@app.exception_handler(RenderFailure)
async def render_failure_handler(request: Request, exc: RenderFailure):
    return JSONResponse({"detail": str(exc), "field": exc.field}, status_code=422)


@app.exception_handler(InvalidUpload)
async def invalid_upload_handler(request: Request, exc: InvalidUpload):
    return JSONResponse({"detail": str(exc)}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(projects_router)
app.include_router(content_router)
app.include_router(publish_router)
app.include_router(scheduler_router)
app.include_router(ops_router)


@app.on_event("startup")
async def startup_event():
    """Start the publish ticker on app startup."""
    from .db import engine
    from .services.scheduler import scheduler_service

    scheduler_service.configure(engine=engine)
    scheduler_service.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the publish ticker on app shutdown."""
    from .services.scheduler import scheduler_service

    scheduler_service.stop()
    logger.info("Scheduler stopped on app shutdown")
