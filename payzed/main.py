import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payzed.core.chain import ChainClient
from payzed.core.config import settings
from payzed.core.db import Database
from payzed.core.errors import ContractNotConfiguredError, StoreError, StoreErrorType
from payzed.modules.notifications.broadcaster import PaymentBroadcaster, subscription_key
from payzed.modules.subscriptions.reconciliation import PaymentReconciler, SubscriptionPaymentWatcher
from payzed.modules.worker.runner import Worker

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)


def payment_success_callback(broadcaster: PaymentBroadcaster):
    async def on_payment_success(result):
        sub = result.subscription
        await broadcaster.broadcast(
            subscription_key(sub.id),
            {
                "type": "payment_recorded",
                "subscription_id": str(sub.id),
                "total_payments": sub.total_payments,
                "first_payment": result.first_payment,
            },
        )
    return on_payment_success


@app.on_event("startup")
async def startup_event():
    database = Database(settings.async_database_url)
    if settings.DB_CREATE_ALL:
        await database.create_all()
    chain = ChainClient(settings.RPC_URL, request_timeout=settings.RPC_TIMEOUT_SECONDS)
    broadcaster = PaymentBroadcaster()

    contract_address = settings.INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS
    reconciler = PaymentReconciler(
        database,
        chain,
        contract_address,
        on_payment_success=payment_success_callback(broadcaster),
        success_delay=settings.PAYMENT_SUCCESS_DELAY_SECONDS,
        receipt_timeout=settings.RECEIPT_TIMEOUT_SECONDS,
    )
    worker = Worker(
        database,
        chain,
        reconciler,
        broadcaster,
        receipt_timeout=settings.RECEIPT_TIMEOUT_SECONDS,
        concurrency=settings.WORKER_CONCURRENCY,
    )
    await worker.start()

    watcher = None
    if settings.EVENT_WATCHER_ENABLED and contract_address:
        watcher = SubscriptionPaymentWatcher(chain, reconciler, contract_address, interval=settings.EVENT_WATCH_INTERVAL_SECONDS)
        await watcher.start()
    elif not contract_address:
        logger.warning("[Startup] INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS not set; subscription actions disabled")

    app.state.database = database
    app.state.chain = chain
    app.state.broadcaster = broadcaster
    app.state.reconciler = reconciler
    app.state.worker = worker
    app.state.watcher = watcher


@app.on_event("shutdown")
async def shutdown_event():
    if app.state.watcher:
        await app.state.watcher.stop()
    await app.state.worker.stop()
    await app.state.database.dispose()


STORE_ERROR_STATUS = {
    StoreErrorType.NOT_FOUND: 404,
    StoreErrorType.CONFLICT: 409,
}


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"[API] {request.method} {request.url.path} failed: {exc.error_type.value} | {exc.message}")
    return JSONResponse(
        status_code=STORE_ERROR_STATUS.get(exc.error_type, 503),
        content={
            "detail": exc.message,
            "error_type": exc.error_type.value,
            "retry_available": exc.retry_available,
            "on_chain_confirmed": exc.on_chain_confirmed,
        },
    )


@app.exception_handler(ContractNotConfiguredError)
async def contract_not_configured_handler(request: Request, exc: ContractNotConfiguredError):
    return JSONResponse(status_code=503, content={"detail": str(exc), "setting": exc.setting_name})


@app.get("/")
def root():
    return {"message": "Welcome to PayZed API", "docs": "/docs"}

from payzed.modules.system.router import router as system_router
from payzed.modules.subscriptions.router import router as subscriptions_router
from payzed.modules.invoices.router import router as invoices_router
from payzed.modules.tokens.router import router as tokens_router

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router, prefix=settings.API_V1_STR, tags=["config"])
app.include_router(subscriptions_router, prefix=f"{settings.API_V1_STR}/subscriptions", tags=["subscriptions"])
app.include_router(invoices_router, prefix=f"{settings.API_V1_STR}/invoices", tags=["invoices"])
app.include_router(tokens_router, prefix=f"{settings.API_V1_STR}/tokens", tags=["tokens"])
