# store_backend/api/main.py

# This is the main FastAPI application entry point.
# It sets up the FastAPI app instance, adds global middleware,
# defines startup/shutdown events (database, payment gateway client,
# background scheduler) and includes routers from feature modules.

import functools

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# --- Import modules from their locations ---
from ..config.settings import settings
from ..db import mongo_client as database
from ..features.payment import routes as payment_routes
from ..features.payment.gateway import LahzaGateway
from ..features.plans import routes as plan_routes
from ..features.stores import routes as store_routes
from ..features.subscription import routes as subscription_routes
from ..features.subscription.reconciliation import PaymentReconciler
from ..features.subscription.sweeps import (
    run_auto_renewal_sweep,
    run_expiring_soon_report,
    run_expiry_sweep,
    run_pending_payment_cleanup,
)
from ..shared.logger import configure_logging, get_logger
from ..shared.scheduler import Scheduler

configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = get_logger("api")

# --- FastAPI App Instance ---
app = FastAPI(title="Store Backend", description="Store subscriptions and payment reconciliation")

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Adjust in production!
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_scheduler(gateway: LahzaGateway, reconciler: PaymentReconciler) -> Scheduler:
    """One scheduler owning every recurring job of the subscription system."""
    scheduler = Scheduler()
    # Adaptive: fast while the last sweep saw pending payments
    scheduler.add_task("payment-reconciliation", reconciler.run_sweep, reconciler.current_interval)
    scheduler.add_task("expiry-sweep", run_expiry_sweep, settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
    scheduler.add_task("auto-renewal-sweep", functools.partial(run_auto_renewal_sweep, gateway), settings.AUTO_RENEW_SWEEP_INTERVAL_SECONDS)
    scheduler.add_task("expiring-soon-report", run_expiring_soon_report, settings.EXPIRING_SOON_REPORT_INTERVAL_SECONDS, run_on_start=False)
    scheduler.add_task("pending-payment-cleanup", run_pending_payment_cleanup, settings.CLEANUP_INTERVAL_SECONDS)
    return scheduler


# --- Application Startup Event ---
# Connect to DB, create the gateway client and the scheduler, store them on app.state.
@app.on_event("startup")
async def startup_event():
    """Actions to run on application startup."""
    logger.info("Application startup initiated")

    app.state.settings = settings
    app.state.db_client = None
    app.state.gateway = None
    app.state.reconciler = None
    app.state.scheduler = None

    # --- Step 1: Connect to MongoDB and make sure the indexes exist ---
    try:
        await database.connect_to_mongo(settings)
        app.state.db_client = database.mongo_client
        if app.state.db_client is not None:
            await database.ensure_indexes()
            logger.info("Database connection established and indexes ensured")
    except Exception as e:
        logger.error("Database initialization failed on startup", error=str(e), exc_info=True)
        app.state.db_client = None

    # --- Step 2: Payment gateway client and reconciliation engine ---
    app.state.gateway = LahzaGateway(
        settings.LAHZA_BASE_URL,
        settings.LAHZA_CALLBACK_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
    app.state.reconciler = PaymentReconciler(app.state.gateway)

    # --- Step 3: Background scheduler ---
    app.state.scheduler = build_scheduler(app.state.gateway, app.state.reconciler)
    if app.state.db_client is None:
        logger.error("Database unavailable, background scheduler not started")
    elif not settings.SCHEDULER_ENABLED:
        logger.info("Background scheduler disabled by configuration")
    else:
        app.state.scheduler.start()

    logger.info("Application startup complete")


# --- Application Shutdown Event ---
@app.on_event("shutdown")
async def shutdown_event():
    """Actions to run on application shutdown: stop jobs, close clients."""
    logger.info("Application shutdown initiated")
    if getattr(app.state, "scheduler", None) is not None:
        await app.state.scheduler.stop()
    if getattr(app.state, "gateway", None) is not None:
        await app.state.gateway.aclose()
    if getattr(app.state, "db_client", None) is not None:
        await database.close_mongo_connection(app.state.db_client)
    logger.info("Application shutdown complete")


# --- Include Feature Routers ---
app.include_router(store_routes.router)
app.include_router(plan_routes.router)
app.include_router(payment_routes.router)
app.include_router(subscription_routes.router)


# --- Root Endpoint ---
@app.get("/")
async def read_root():
    return {"message": "Store backend is running."}


# --- Global Exception Handlers ---
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception occurred", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An internal server error occurred."}
    )


# --- Main Execution Block ---
if __name__ == "__main__":
    logger.info("Starting FastAPI server with uvicorn")
    uvicorn.run(
        "store_backend.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
