from pydantic import BaseModel, HttpUrl, model_validator


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "info"

    # Public base URL, used in documentation responses only
    public_url: str = "http://localhost:3000"

    # Comma-separated list of allowed origins
    cors_origins: str = "*"

    # Health Check Configuration
    health_check_timeout: float = 2.0  # Ledger RPC ping timeout (seconds)
    health_check_slow_threshold_ms: float = 500.0

    # Telemetry
    otel_enabled: bool = False
    otel_service_name: str = "x402-oracle"
    otel_exporter_otlp_endpoint: HttpUrl = "http://jaeger:4317"  # type: ignore[assignment]

    @model_validator(mode="after")
    def validate_server_config(self) -> "ServerSettings":
        if not self.otel_service_name.strip():
            raise ValueError("X402_SERVER__OTEL_SERVICE_NAME cannot be empty")
        if self.health_check_timeout <= 0:
            raise ValueError("X402_SERVER__HEALTH_CHECK_TIMEOUT must be positive")
        return self
