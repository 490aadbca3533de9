"""
FastAPI server — index query API over the beneficiary store.

Exposes owner and beneficiary views, confirm-then-mirror mutations and ledger
transaction ingestion. Config via Settings (env / .env). Errors are JSON:
{"success": false, "kind": ..., "error": ...}, plus "traceback" when DEBUG is on.
"""

from __future__ import annotations

import traceback
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend_zombie import __version__
from backend_zombie.api_server.beneficiaries import router as beneficiaries_router
from backend_zombie.api_server.ledger_events import router as ledger_router
from backend_zombie.config import Settings, get_settings
from backend_zombie.config.env import mask_rpc_url
from backend_zombie.core.exceptions import StoreUnavailable, ZombieError
from backend_zombie.core.expiry import now_ms
from backend_zombie.database.connection import redact_url
from backend_zombie.database.store import BeneficiaryStore, get_store
from backend_zombie.ledger.gateway import LedgerGateway
from backend_zombie.ledger.memory import InMemoryLedger
from backend_zombie.ledger.sui_gateway import SuiLedgerGateway
from backend_zombie.reconciliation.engine import ReconciliationEngine
from backend_zombie.services.custody import CustodyService
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Wiring
# -----------------------------------------------------------------------------


def build_ledger(settings: Settings) -> LedgerGateway:
    if settings.ledger_backend == "memory":
        logger.warning("ledger_backend_memory", message="Using in-memory ledger; state is lost on restart")
        return InMemoryLedger()
    logger.info(
        "ledger_backend_sui",
        network=settings.sui_network,
        rpc_url=mask_rpc_url(settings.sui_rpc_url),
        package_id=settings.package_id,
    )
    return SuiLedgerGateway(
        settings.sui_rpc_url,
        settings.package_id,
        request_timeout_sec=settings.rpc_timeout_sec,
        confirm_timeout_sec=settings.confirm_timeout_sec,
        confirm_poll_interval_sec=settings.confirm_poll_interval_sec,
    )


def _error_response(exc: ZombieError, request: Request) -> JSONResponse:
    content = exc.to_dict()
    if request.app.state.settings.debug:
        content["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=exc.http_status, content=content)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ZombieError)
    def zombie_error_handler(request: Request, exc: ZombieError) -> JSONResponse:
        log = logger.error if isinstance(exc, StoreUnavailable) or exc.http_status >= 500 else logger.info
        log("api_request_failed", path=request.url.path, kind=exc.kind, error=exc.reason)
        return _error_response(exc, request)

    @app.exception_handler(RequestValidationError)
    def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        reason = f"{where}: {first.get('msg', 'invalid request')}" if where else "Invalid request"
        content: dict[str, Any] = {"success": False, "kind": "validation_error", "error": reason}
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(Exception)
    def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("api_unhandled_error", path=request.url.path, error=str(exc))
        content: dict[str, Any] = {"success": False, "kind": "internal_error", "error": "Internal server error"}
        if request.app.state.settings.debug:
            content["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content=content)


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    store: BeneficiaryStore | None = None,
    ledger: LedgerGateway | None = None,
    clock: Callable[[], int] = now_ms,
    sleep: Callable[[float], None] | None = None,
) -> FastAPI:
    """
    Build the API. Tests pass explicit store/ledger/clock; production reads
    everything from Settings.
    """
    settings = settings or get_settings()
    store = store or get_store(settings.database_url)
    ledger = ledger or build_ledger(settings)
    engine_kwargs: dict[str, Any] = {
        "retry_attempts": settings.store_retry_attempts,
        "retry_backoff_sec": settings.store_retry_backoff_sec,
        "clock": clock,
    }
    if sleep is not None:
        engine_kwargs["sleep"] = sleep
    engine = ReconciliationEngine(store, ledger, **engine_kwargs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "api_started",
            database=redact_url(settings.database_url),
            ledger_backend=settings.ledger_backend,
            debug=settings.debug,
        )
        yield
        close = getattr(ledger, "close", None)
        if callable(close):
            close()
        dispose = getattr(store, "dispose", None)
        if callable(dispose):
            dispose()
        logger.info("api_stopped")

    app = FastAPI(
        title="Zombie Wallet Index API",
        description="Inactivity index for dead-man's-switch wallets: owner views, claim lists, ledger reconciliation.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.ledger = ledger
    app.state.engine = engine
    app.state.custody = CustodyService(store, ledger, engine, clock=clock)
    app.state.clock = clock

    _install_error_handlers(app)
    app.include_router(beneficiaries_router)
    app.include_router(ledger_router)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness probe: API is up."""
        return {"status": "ok", "ledgerBackend": settings.ledger_backend}

    return app
