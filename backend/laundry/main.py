import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from laundry import db
from laundry.config import settings

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.connect()
    await db.ensure_indexes()
    yield
    await db.close()


app = FastAPI(
    title="Laundry Pickup & Delivery — Booking Service",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    return {"status": "ok"}
