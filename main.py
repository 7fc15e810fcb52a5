import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import auth
import general_settings
import orders
import qrcodenames
import reports
import roles
import stock
import theaters
from catalog import categories_router, product_types_router, products_router
from config import settings
from database import db, ensure_indexes
from errors import ApiError, register_error_handlers

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if db is not None:
        ensure_indexes(db)
    else:
        logger.warning("DATABASE_URL is not set, database routes will answer 503")
    yield


# -----------------------------
# FastAPI App
# -----------------------------
app = FastAPI(title="Theater Canteen API - MongoDB", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

for router in (
    auth.router,
    orders.router,
    orders.dashboard_router,
    categories_router,
    product_types_router,
    products_router,
    qrcodenames.router,
    roles.router,
    theaters.router,
    stock.router,
    reports.router,
    general_settings.router,
):
    app.include_router(router)


@app.get("/")
def root():
    return {"message": "Theater Canteen Backend Running", "driver": "mongodb", "db": settings.database_name}


@app.get("/health")
def health():
    if db is None:
        raise ApiError(503, "Database not available", code="DATABASE_UNAVAILABLE")
    db.command("ping")
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
