from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from pymongo.errors import PyMongoError
from app.config import CORS_ORIGINS, HOST, LOG_LEVEL, PORT, SCHEDULER_ENABLED
from app.database import ensure_indexes, ping_database
from app.dependencies.services import (
    build_delivery_engine,
    get_notification_store,
    get_push_gateway,
    get_user_directory,
)
from app.middleware.request_logging import request_logging_middleware
from app.routes.notifications import router as notifications_router
from app.utils.errors import NotificationError
from app.workers.notification_scheduler import NotificationScheduler
import logging

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


def build_scheduler() -> NotificationScheduler:
    store = get_notification_store()
    directory = get_user_directory()
    engine = build_delivery_engine(store, directory, get_push_gateway(directory))
    return NotificationScheduler(engine, store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 FastAPI starting up...")

    if ping_database():
        try:
            ensure_indexes()
        except PyMongoError as e:
            logger.error(f"⚠️ Index creation warning: {e}")

    app.state.scheduler = None
    if SCHEDULER_ENABLED:
        app.state.scheduler = build_scheduler()
        app.state.scheduler.launch()
        logger.info("✅ Notification scheduler started")

    yield

    # Shutdown
    logger.info("🔄 FastAPI shutting down...")
    if app.state.scheduler:
        await app.state.scheduler.shutdown()
        logger.info("✅ Notification scheduler stopped")


app = FastAPI(title="Back-Office Notifications API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.middleware("http")(request_logging_middleware)

app.include_router(notifications_router)


@app.exception_handler(NotificationError)
async def notification_error_handler(request: Request, exc: NotificationError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation Error", "errors": jsonable_encoder(errors)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if exc.status_code != 404 or exc.detail != "Not Found" else "Route not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal Server Error"},
    )


@app.get("/")
def read_root():
    return {"message": "Server is running"}


@app.get("/health")
def health_check():
    """Health check endpoint for container deployments"""
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "healthy",
        "message": "Notifications backend is running",
        "scheduler": "running" if scheduler and scheduler.running else "stopped",
    }


@app.head("/healthz")
def healthz_head():
    """Lightweight liveness probe (HEAD) with no body"""
    return Response(status_code=200)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=HOST, port=PORT)
