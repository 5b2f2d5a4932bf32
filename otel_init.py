"""
OpenTelemetry initialization for notdeadyet.

Traces, metrics and logs are exported over OTLP when
OTEL_EXPORTER_OTLP_ENDPOINT is set. Without an endpoint the global no-op
provider stays in place, so `get_tracer()` is always safe to call.

Usage:
1. Call `setup_telemetry()` once during startup
2. Call `instrument_fastapi_app(app)` for the HTTP surface
3. Call `attach_logging_handler()` after logging is configured
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

SERVICE_NAME = "notdeadyet"

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)

_initialization_state = {
    "tracing": {"success": False, "error": None},
    "metrics": {"success": False, "error": None},
    "logs": {"success": False, "error": None},
    "http_instrumentation": {"success": False, "error": None},
}


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_otlp_headers(headers_env: str, signal_type: str) -> dict[str, str] | None:
    """
    Parse OTLP headers from environment variable.

    Args:
        headers_env: Header string in format "key1=value1,key2=value2"
        signal_type: Signal type for logging (e.g., "tracing", "metrics", "logs")

    Returns:
        Dictionary of headers or None if invalid/empty
    """
    if not headers_env or not headers_env.strip():
        return None

    headers_list = [
        tuple(h.strip().split("=", 1))
        for h in headers_env.split(",")
        if "=" in h.strip()
    ]
    headers = {k.strip(): v.strip() for k, v in headers_list}

    if not headers:
        logger.warning(
            f"OTEL_EXPORTER_OTLP_HEADERS provided but no valid key=value pairs found. "
            f"Expected format: 'key1=value1,key2=value2'. Got: '{headers_env[:50]}...'"
        )
    else:
        logger.debug(f"Parsed {len(headers)} OTLP header(s) for {signal_type}")

    return headers


def setup_telemetry(
    service_name: str = SERVICE_NAME,
    service_version: str | None = None,
    otlp_endpoint: str | None = None,
) -> None:
    """
    Set up OpenTelemetry exporters and httpx client instrumentation.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint URL (defaults to OTEL_EXPORTER_OTLP_ENDPOINT)
    """
    global _global_logger_provider

    if not _env_flag("ENABLE_OTEL"):
        return

    service_version = service_version or os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    fail_fast = _env_flag("OTEL_FAIL_FAST", "false")
    headers_env = os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "")

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": service_version,
            "deployment.environment": os.getenv("ENVIRONMENT", "production"),
        }
    )

    if otlp_endpoint and _env_flag("ENABLE_TRACES"):
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "tracing"),
                    )
                )
            )
            trace.set_tracer_provider(tracer_provider)
            _initialization_state["tracing"]["success"] = True
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")
        except Exception as e:
            _initialization_state["tracing"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry tracing: {e}", exc_info=True)
            if fail_fast:
                raise

    if otlp_endpoint and _env_flag("ENABLE_METRICS"):
        try:
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(
                    endpoint=otlp_endpoint,
                    headers=parse_otlp_headers(headers_env, "metrics"),
                ),
                export_interval_millis=int(
                    os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")
                ),
            )
            metrics.set_meter_provider(
                MeterProvider(resource=resource, metric_readers=[metric_reader])
            )
            _initialization_state["metrics"]["success"] = True
            logger.info(f"OpenTelemetry metrics enabled for {service_name}")
        except Exception as e:
            _initialization_state["metrics"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry metrics: {e}", exc_info=True)
            if fail_fast:
                raise

    if otlp_endpoint and _env_flag("ENABLE_LOGS"):
        try:
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "logs"),
                    )
                )
            )
            _global_logger_provider = logger_provider
            _initialization_state["logs"]["success"] = True
            logger.info(f"OpenTelemetry logging export configured for {service_name}")
        except Exception as e:
            _initialization_state["logs"]["error"] = str(e)
            logger.error(
                f"Failed to set up OpenTelemetry logging export: {e}", exc_info=True
            )
            if fail_fast:
                raise

    # Receivers talk to Pushover and webhooks through httpx
    try:
        HTTPXClientInstrumentor().instrument()
        _initialization_state["http_instrumentation"]["success"] = True
    except Exception as e:
        _initialization_state["http_instrumentation"]["error"] = str(e)
        logger.error(f"Failed to instrument httpx: {e}", exc_info=True)
        if fail_fast:
            raise

    failed_components = [
        k for k, v in _initialization_state.items() if v.get("error") is not None
    ]
    if failed_components:
        logger.warning(
            f"OpenTelemetry setup completed for {service_name} v{service_version} "
            f"with {len(failed_components)} failed component(s): {', '.join(failed_components)}"
        )
    else:
        logger.info(
            f"OpenTelemetry setup completed for {service_name} v{service_version}"
        )


def instrument_fastapi_app(app, fail_fast: bool | None = None):
    """
    Instrument a FastAPI application.

    Args:
        app: FastAPI application instance
        fail_fast: Whether to fail fast on errors (defaults to OTEL_FAIL_FAST env var)
    """
    if fail_fast is None:
        fail_fast = _env_flag("OTEL_FAIL_FAST", "false")

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI application: {e}", exc_info=True)
        if fail_fast:
            raise


def attach_logging_handler() -> bool:
    """
    Attach the OTLP logging handler to the root logger.

    Call this after `configure_logging()`, which replaces root handlers.
    uvicorn loggers propagate to root once logging is configured, so they
    are covered too.
    """
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.debug("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None and _otlp_logging_handler in root_logger.handlers:
        logger.debug("OTLP logging handler already attached")
        return True

    try:
        handler = LoggingHandler(
            level=logging.NOTSET,
            logger_provider=_global_logger_provider,
        )
        root_logger.addHandler(handler)
        _otlp_logging_handler = handler
        logger.info("OTLP logging handler attached to root logger")
        return True
    except Exception as e:
        logger.error(f"Failed to attach logging handler: {e}", exc_info=True)
        return False


def get_tracer(name: str = None) -> trace.Tracer:
    return trace.get_tracer(name or SERVICE_NAME)


def check_otlp_health() -> dict:
    """
    Report which telemetry components were requested and whether they came up.

    Returns:
        {"healthy": bool, "<component>": {"status": "ok" | "failed" | "not_configured"}}
    """
    health: dict = {"healthy": True}
    for component, state in _initialization_state.items():
        if state["success"]:
            health[component] = {"status": "ok"}
        elif state["error"]:
            health[component] = {"status": "failed", "error": state["error"]}
            health["healthy"] = False
        else:
            health[component] = {"status": "not_configured"}
    return health
