# main.py
import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config.logging_config import configure_logging
from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.broker_routes import router as broker_router
from routers.position_routes import router as position_router
from routers.staging_routes import router as staging_router
from routers.transaction_routes import router as transaction_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Portfolio Ledger")

origins = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # missing/invalid fields are a plain 400 for the ledger API
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


# Include routers
app.include_router(transaction_router, prefix="/api/transactions")
app.include_router(position_router, prefix="/api")
app.include_router(staging_router, prefix="/api/staging")
app.include_router(broker_router, prefix="/api/broker")

# db startup
from database import Base, engine  # noqa: E402
import models  # noqa: E402, F401  registers every table on Base.metadata

Base.metadata.create_all(bind=engine)
