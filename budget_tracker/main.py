import time
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, settings as default_settings
from .core.errors import BudgetTrackerError
from .core.logging import configure_logging, get_logger
from .core.security import SignatureVerifier
from .database import build_engine, init_db
from .routers import admin as admin_router
from .routers import budgets as budgets_router
from .routers import payments as payments_router
from .routers import transactions as transactions_router
from .routers import users as users_router
from .services.gateway import GatewayClient, RazorpayGatewayClient
from .services.ledger import Ledger, SqlLedger
from .services.pipeline import PaymentPipeline


APP_NAME = "AI Budget Tracker – Backend"
APP_VERSION = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    ledger: Optional[Ledger] = None,
    gateway: Optional[GatewayClient] = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings)
    logger = get_logger("http")

    if ledger is None:
        ledger = SqlLedger(build_engine(settings), settings.default_monthly_budget)
    if gateway is None:
        gateway = RazorpayGatewayClient(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
            timeout=settings.gateway_timeout_seconds,
        )
    verifier = SignatureVerifier(settings.razorpay_key_secret, settings.razorpay_webhook_secret)

    app = FastAPI(title=APP_NAME, version=APP_VERSION)
    app.state.settings = settings
    app.state.ledger = ledger
    app.state.gateway = gateway
    app.state.pipeline = PaymentPipeline(ledger, gateway, verifier, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    # ─────────────────────────────
    #   ERROR HANDLERS
    # ─────────────────────────────

    @app.exception_handler(BudgetTrackerError)
    async def handle_domain_error(request: Request, exc: BudgetTrackerError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "Invalid request", "details": details},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("unhandled_error", path=request.url.path, exc_info=exc)
        content = {"success": False, "error": "Internal server error"}
        if settings.is_development:
            content["message"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    # ─────────────────────────────
    #   LIFECYCLE
    # ─────────────────────────────

    @app.on_event("startup")
    def on_startup():
        if isinstance(ledger, SqlLedger):
            init_db(ledger.engine)
        logger.info("startup", environment=settings.environment)

    @app.on_event("shutdown")
    async def on_shutdown():
        await gateway.aclose()

    @app.get("/health")
    def health():
        return {"status": "ok", "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())}

    @app.get("/api/info")
    def info():
        return {
            "name": APP_NAME,
            "version": APP_VERSION,
            "environment": settings.environment,
            "gatewayKeyId": settings.razorpay_key_id,
            "endpoints": {
                "health": "GET /health",
                "createUser": "POST /api/users",
                "getUser": "GET /api/users/{userId}",
                "createOrder": "POST /api/create-order",
                "verifyPayment": "POST /api/verify-payment",
                "setBudget": "POST /api/set-budget",
                "getBudget": "GET /api/budget/{userId}",
                "dashboard": "GET /api/dashboard/{userId}",
                "transactions": "GET /api/transactions/{userId}",
                "analytics": "GET /api/analytics/{userId}",
                "webhook": "POST /api/webhook",
                "adminStats": "GET /api/admin/stats",
                "adminExport": "GET /api/admin/export",
            },
        }

    app.include_router(users_router.router)
    app.include_router(payments_router.router)
    app.include_router(budgets_router.router)
    app.include_router(transactions_router.router)
    app.include_router(admin_router.router)

    return app


app = create_app()
