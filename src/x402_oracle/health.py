"""Health check endpoints and utilities.

This module provides Kubernetes-compatible health check endpoints:
- /healthz: Liveness probe (simple alive check)
- /readyz: Readiness probe (checks the ledger RPC)
- /health: Detailed health status with metrics
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from x402_oracle.crypto.interfaces import LedgerClient
from x402_oracle.guard.replay import ReplayGuard
from x402_oracle.logging_config import get_logger

logger = get_logger("health")


class HealthStatus(str, Enum):
    """Health check status values."""

    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass
class HealthCheckResult:
    """Result of a health check operation.

    Attributes:
        status: Health status (OK, TIMEOUT, or ERROR)
        message: Optional human-readable message
        latency_ms: Response time in milliseconds
    """

    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = Field(..., description="Overall system health status")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str = Field(..., description="API version")
    checks: dict[str, str] = Field(..., description="Individual component statuses")
    replay_guard_entries: int = Field(..., description="Accepted signatures held")


class ReadinessResponse(BaseModel):
    """Response model for /readyz endpoint."""

    status: str = Field(..., description="Readiness status")
    dependencies: dict[str, str] = Field(..., description="Dependency statuses")


async def check_ledger_health(
    ledger: LedgerClient, rpc_url: str, timeout: float
) -> HealthCheckResult:
    """Ping the ledger RPC node with `getHealth`.

    Args:
        ledger: Ledger client used by the verifier
        rpc_url: RPC endpoint of the configured network
        timeout: Maximum time to wait for response in seconds

    Returns:
        HealthCheckResult with status and latency in milliseconds.
    """
    start_time = time.perf_counter()

    try:
        healthy = await asyncio.wait_for(ledger.get_health(rpc_url), timeout=timeout)
    except TimeoutError:
        latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.warning(
            "ledger_health_check_timeout",
            timeout_seconds=timeout,
            latency_ms=latency_ms,
        )
        return HealthCheckResult(
            status=HealthStatus.TIMEOUT,
            message=f"Timeout after {timeout}s",
            latency_ms=latency_ms,
        )
    except Exception as e:
        latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.error(
            "ledger_health_check_error",
            error=str(e),
            latency_ms=latency_ms,
            exc_info=True,
        )
        return HealthCheckResult(
            status=HealthStatus.ERROR,
            message="Ledger unreachable",
            latency_ms=latency_ms,
        )

    latency_ms = round((time.perf_counter() - start_time) * 1000, 2)
    if healthy:
        logger.debug("ledger_health_check_ok", latency_ms=latency_ms)
        return HealthCheckResult(status=HealthStatus.OK, latency_ms=latency_ms)

    logger.warning("ledger_health_check_unhealthy", latency_ms=latency_ms)
    return HealthCheckResult(
        status=HealthStatus.ERROR,
        message="RPC node reports unhealthy",
        latency_ms=latency_ms,
    )


def register_health_endpoints(
    app: FastAPI,
    ledger: LedgerClient,
    rpc_url: str,
    replay_guard: ReplayGuard,
    health_check_timeout: float,
    slow_threshold_ms: float = 500.0,
) -> None:
    """Register health check endpoints on FastAPI application.

    Args:
        app: FastAPI application instance
        ledger: Ledger client to probe
        rpc_url: RPC endpoint of the configured network
        replay_guard: Replay guard whose size is reported
        health_check_timeout: Timeout for health checks in seconds
        slow_threshold_ms: Log warning if health check exceeds this duration
    """

    async def _timed_check() -> HealthCheckResult:
        start_time = time.perf_counter()
        result = await check_ledger_health(ledger, rpc_url, health_check_timeout)
        duration_ms = (time.perf_counter() - start_time) * 1000
        if duration_ms > slow_threshold_ms:
            logger.warning(
                "health_check_slow",
                duration_ms=round(duration_ms, 2),
                threshold_ms=slow_threshold_ms,
            )
        return result

    @app.get("/healthz")
    async def liveness() -> dict[str, str]:
        """Liveness probe; always 200 while the process is serving."""
        return {"status": "ok"}

    @app.get("/readyz", response_model=ReadinessResponse)
    async def readiness() -> ReadinessResponse:
        """Readiness probe; 503 when the ledger RPC is not reachable."""
        ledger_status = await _timed_check()

        if ledger_status.status != HealthStatus.OK:
            logger.info(
                "readiness_check_not_ready",
                ledger_status=ledger_status.status.value,
                ledger_message=ledger_status.message,
            )
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "not_ready",
                    "dependencies": {"ledger_rpc": ledger_status.status.value},
                },
            )

        return ReadinessResponse(
            status="ready", dependencies={"ledger_rpc": HealthStatus.OK.value}
        )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Detailed health status; always 200, details in the body."""
        ledger_status = await _timed_check()
        overall_status = (
            "healthy" if ledger_status.status == HealthStatus.OK else "degraded"
        )

        return HealthResponse(
            status=overall_status,
            timestamp=datetime.now(UTC).isoformat(),
            version=app.version,
            checks={
                "api": HealthStatus.OK.value,
                "ledger_rpc": ledger_status.status.value,
            },
            replay_guard_entries=len(replay_guard),
        )
