import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Load env from the project .env (tests configure the environment themselves)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from career_compass.core.config import require_payment_secret, settings, validate_config
from career_compass.core.logging import configure_logging
from career_compass.core.middleware.request_id import RequestIdMiddleware
from career_compass.core.validation import validate_env
from career_compass.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from career_compass.api import (
    analysis,
    checkout,
    contact,
    goals,
    health,
    referrals,
    subscription,
    tickets,
    usage,
)

configure_logging(settings.ENV)
require_payment_secret()
validate_env()
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("career_compass")
    logger.info("Starting Career Compass backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("career_compass").info("Stopping Career Compass backend...")


app = FastAPI(title="Career Compass API", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router)
app.include_router(analysis.router)
app.include_router(tickets.router)
app.include_router(referrals.router)
app.include_router(checkout.router)
app.include_router(subscription.router)
app.include_router(usage.router)
app.include_router(goals.goals_router)
app.include_router(goals.tasks_router)
app.include_router(contact.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("career_compass.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
