from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

import config
from database import Base, SessionLocal, engine
from routers.auth import router as auth_router
from routers.bookings import router as bookings_router
from routers.payments import router as payments_router
from routers.reviews import router as reviews_router
from routers.users import router as users_router
from routers.venues import router as venues_router
from utils.otp_service import build_otp_service
from utils.otp_store import StorageError
from utils.stripe_client import PaymentGatewayError
from utils.uploads import URL_PREFIX, UploadRejected

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=f"{config.APP_NAME} Backend")

# Create tables (simple projects; for production use migrations).
Base.metadata.create_all(bind=engine)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount(URL_PREFIX, StaticFiles(directory=str(config.UPLOAD_DIR)), name="uploads")

app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(venues_router, prefix="/api")
app.include_router(bookings_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(reviews_router, prefix="/api")


@app.exception_handler(StorageError)
def _storage_error(request: Request, exc: StorageError):
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable. Please try again."})


@app.exception_handler(PaymentGatewayError)
def _payment_error(request: Request, exc: PaymentGatewayError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(UploadRejected)
def _upload_rejected(request: Request, exc: UploadRejected):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def _purge_expired_otps() -> int:
    """Drop unconsumed codes past their expiry."""
    db = SessionLocal()
    try:
        return build_otp_service(db).purge_expired()
    except StorageError:
        logger.warning("Scheduled OTP purge failed; retrying next interval")
        return 0
    finally:
        db.close()


@app.on_event("startup")
def _start_scheduler():
    sched = BackgroundScheduler(timezone=config.TZ)
    sched.add_job(
        _purge_expired_otps,
        "interval",
        minutes=config.OTP_PURGE_INTERVAL_MIN,
        id="purge_expired_otps",
        replace_existing=True,
    )
    sched.start()
    app.state._scheduler = sched
    logger.info("%s backend started", config.APP_NAME)


@app.on_event("shutdown")
def _stop_scheduler():
    sched = getattr(app.state, "_scheduler", None)
    if sched:
        sched.shutdown(wait=False)


@app.get("/")
def root():
    return {"status": "Backend running"}


@app.get("/api/health")
def health():
    return {"ok": True, "service": config.APP_NAME}
