from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.config import settings
from core.exceptions import register_exception_handlers
from app.startup import configure_logging, run_startup_checks

# ========== Payroll & Payouts ==========
from modules.payroll.routes.payroll_routes import router as payroll_router
from modules.payouts.routes.webhook_routes import router as payout_webhook_router
from modules.payroll.tasks.payroll_jobs import start_payroll_scheduler, stop_payroll_scheduler

configure_logging()

app = FastAPI(
    title="Payroll & Payouts API",
    description="""
    Time tracking, payroll calculation and Telebirr B2C salary payouts.

    - Payroll is calculated from approved time entries into pending payments
    - Approving a payment dispatches it through Arifpay
    - Settlement is confirmed by a signed callback
    """,
    version="1.0.0",
)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

app.include_router(payroll_router)
app.include_router(payout_webhook_router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup"""
    run_startup_checks()
    if settings.SCHEDULER_ENABLED:
        await start_payroll_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown"""
    await stop_payroll_scheduler()


@app.get("/")
def read_root():
    return {"message": "Payroll backend is running"}


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
