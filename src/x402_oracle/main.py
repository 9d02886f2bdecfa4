import uuid
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.middleware.cors import CORSMiddleware

from x402_oracle import __version__
from x402_oracle.config import Settings, get_settings
from x402_oracle.crypto.interfaces import LedgerClient
from x402_oracle.crypto.solana_rpc import SolanaRpcClient
from x402_oracle.crypto.verifier import PaymentVerifier
from x402_oracle.gate import GateOutcome, PaymentRequirement, ResourceGate
from x402_oracle.guard.replay import ReplayGuard
from x402_oracle.health import register_health_endpoints
from x402_oracle.logging_config import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    get_logger,
)
from x402_oracle.telemetry import init_telemetry

logger = get_logger("api")

REPUTATION_ENDPOINT = "/api/reputation"


def _to_response(outcome: GateOutcome) -> JSONResponse:
    return JSONResponse(
        outcome.body, status_code=outcome.status_code, headers=outcome.headers
    )


def create_app(
    settings: Settings | None = None,
    ledger: LedgerClient | None = None,
    replay_guard: ReplayGuard | None = None,
) -> FastAPI:
    """
    Build the reputation API.

    Args:
        settings: Application settings (defaults to environment)
        ledger: Ledger client; a Solana JSON-RPC client is created if omitted
        replay_guard: Shared replay guard; created from settings if omitted
    """
    settings = settings or get_settings()
    payment = settings.payment

    owns_ledger = ledger is None
    if ledger is None:
        ledger = SolanaRpcClient(timeout=payment.rpc_timeout_seconds)
    # An empty guard is falsy (__len__), so test for None explicitly
    if replay_guard is None:
        replay_guard = ReplayGuard(
            max_entries=payment.replay_max_entries,
            retain_entries=payment.replay_retain_entries,
        )

    verifier = PaymentVerifier.from_settings(payment, ledger, replay_guard)
    gate = ResourceGate(
        verifier,
        PaymentRequirement(
            receiver=payment.receiver_wallet,
            amount=payment.price,
            token=payment.token,
            network=payment.network,
        ),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "startup_complete",
            receiver=payment.receiver_wallet,
            price=str(payment.price),
            token=payment.token,
            network=payment.network,
        )
        try:
            yield
        finally:
            if owns_ledger and isinstance(ledger, SolanaRpcClient):
                await ledger.close()
            logger.info("shutdown_complete")

    app = FastAPI(
        title="x402 Wallet Reputation Oracle", version=__version__, lifespan=lifespan
    )
    app.state.gate = gate
    app.state.replay_guard = replay_guard

    origins = [
        origin.strip()
        for origin in settings.server.cors_origins.split(",")
        if origin.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Payment-Required",
            "X-Payment-Receiver",
            "X-Payment-Amount",
            "X-Payment-Token",
            "X-Payment-Network",
            "X-Payment-Verified",
            "X-Payment-Signature",
            "Retry-After",
        ],
    )

    if settings.server.otel_enabled:
        init_telemetry(
            settings.server.otel_service_name,
            str(settings.server.otel_exporter_otlp_endpoint),
        )
        FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Generate and bind a request_id for every HTTP request."""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_request_id(request_id)
        logger.info("request_started", method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            raise
        finally:
            clear_request_context()

    @app.get(REPUTATION_ENDPOINT)
    async def get_reputation(
        wallet: str | None = None,
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        """Wallet reputation; requires an x402 payment signature."""
        outcome = await gate.authorize(authorization, subject=wallet)
        return _to_response(outcome)

    @app.post(REPUTATION_ENDPOINT)
    async def post_reputation(
        request: Request,
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        """Same as GET, with the wallet given as {"wallet": ...} in the body."""
        wallet = None
        if authorization:
            body: Any
            try:
                body = await request.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("wallet"), str):
                wallet = body["wallet"]
        outcome = await gate.authorize(authorization, subject=wallet)
        return _to_response(outcome)

    @app.options(REPUTATION_ENDPOINT)
    async def describe_reputation() -> JSONResponse:
        """Price, receiver and accepted request shapes."""
        return JSONResponse(
            gate.describe(REPUTATION_ENDPOINT, settings.server.public_url)
        )

    register_health_endpoints(
        app,
        ledger,
        payment.rpc_url,
        replay_guard,
        health_check_timeout=settings.server.health_check_timeout,
        slow_threshold_ms=settings.server.health_check_slow_threshold_ms,
    )

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.server.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    run()
