# backend/main.py
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

load_dotenv()

from config import settings
from database import SessionLocal, init_db
from services.errors import (
    BakeryError, AmountBelowMinimum, CheckoutValidationError, InsufficientStock, InvalidStatusTransition,
    InvalidWebhookPayload, InvalidWebhookSignature, NotFound, OrderTotalMismatch, PaymentAmountMismatch,
    PaymentNotAllowed, PaymentProcessorError, PaymentVerificationFailed,
)
from services.reaper import run_reaper_forever
from utils import notifier

# Router imports
from routes.auth import router as auth_router
from routes.menu import router as menu_router
from routes.cart import router as cart_router
from routes.orders import router as orders_router
from routes.custom_cakes import router as custom_cakes_router
from routes.payments import router as payments_router
from routes.stock import router as stock_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# HTTP status for each domain error; subclasses not listed fall back to 400
ERROR_STATUS = {
    NotFound: 404,
    InsufficientStock: 409,
    InvalidStatusTransition: 409,
    PaymentNotAllowed: 409,
    AmountBelowMinimum: 400,
    PaymentAmountMismatch: 400,
    CheckoutValidationError: 400,
    OrderTotalMismatch: 422,
    InvalidWebhookSignature: 403,
    InvalidWebhookPayload: 400,
    PaymentProcessorError: 502,
    PaymentVerificationFailed: 202,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    reaper_task = None
    if settings.REAPER_ENABLED:
        reaper_task = asyncio.create_task(run_reaper_forever(SessionLocal))
    yield
    if reaper_task is not None:
        reaper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reaper_task
    await notifier.drain()


app = FastAPI(title="Bakery Storefront API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(BakeryError)
async def bakery_error_handler(request: Request, exc: BakeryError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %s %s: %s", request.method, request.url.path, status_code,
                    type(exc).__name__, exc)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_detail(), "error": type(exc).__name__})


# CORS Configuration
origins = ["http://localhost:5173", "http://127.0.0.1:5173"]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Router registration
app.include_router(auth_router)
app.include_router(menu_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(custom_cakes_router)
app.include_router(payments_router)
app.include_router(stock_router)


@app.get("/")
def read_root():
    return {"message": "Bakery Storefront API is running"}
