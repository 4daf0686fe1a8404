import logging
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import (
    LOG_LEVEL,
    LONG_SWEEP_SECONDS,
    REQUEST_GRACE_MINUTES,
    SHORT_SWEEP_SECONDS,
    SWEEPER_ENABLED,
    UPLOADS_DIR,
    UPLOADS_URL_PREFIX,
)
from db import create_db_and_tables, new_session
from errors import ListingError
from images import get_image_store
from scheduler import SweepScheduler
from sweeper import Sweeper
from routers import admin, auth, notifications, products, users

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Donation Listings")

# Serve uploaded images
Path(UPLOADS_DIR).mkdir(parents=True, exist_ok=True)
app.mount(UPLOADS_URL_PREFIX, StaticFiles(directory=UPLOADS_DIR), name="uploads")


@app.exception_handler(ListingError)
def listing_error_handler(request: Request, exc: ListingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"error": exc.kind, "detail": exc.detail}),
    )


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Same shape and kind as validation failures raised by the listing engine
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "validation", "detail": exc.errors()}),
    )


@app.on_event("startup")
async def on_startup() -> None:
    create_db_and_tables()

    if SWEEPER_ENABLED:
        sweeper = Sweeper(
            new_session,
            get_image_store(),
            request_grace=timedelta(minutes=REQUEST_GRACE_MINUTES),
        )
        app.state.scheduler = SweepScheduler(sweeper, SHORT_SWEEP_SECONDS, LONG_SWEEP_SECONDS)
        app.state.scheduler.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()


@app.get("/")
def root():
    return {"status": "ok"}


app.include_router(auth.router, prefix="/admin")
app.include_router(admin.router, prefix="/admin")
app.include_router(users.router, prefix="/users")
app.include_router(products.router, prefix="/products")
app.include_router(notifications.router, prefix="/notifications")
