"""
Not Dead Yet? - The dead man's switch monitoring daemon.

Apps call /im-alive/<token> periodically. When an app stays silent longer
than its timeout, its receivers are notified until it checks in again.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn
from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.alerting.receivers import build_receivers
from core.config import Config, ConfigError, load_config
from core.logging_setup import configure_logging
from core.monitoring.registry import LiveSignResult, WatcherRegistry, build_registry
from otel_init import (
    attach_logging_handler,
    check_otlp_health,
    instrument_fastapi_app,
    setup_telemetry,
)

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

app = FastAPI(
    title="notdeadyet",
    description="The dead man's switch monitoring daemon",
    version=__version__,
)
app.state.config = Config()
app.state.receivers = {}
app.state.registry = None


def get_registry() -> WatcherRegistry:
    registry = app.state.registry
    if registry is None:
        raise HTTPException(status_code=503, detail="Watchers not started")
    return registry


@app.on_event("startup")
async def startup_event():
    """Build and start one watcher per configured app."""
    setup_telemetry(service_version=app.version)
    attach_logging_handler()

    config: Config = app.state.config
    app.state.receivers = build_receivers(config.receivers)
    app.state.registry = build_registry(config, app.state.receivers)
    app.state.registry.start_all()

    logger.info("notdeadyet started")


@app.on_event("shutdown")
async def shutdown_event():
    if app.state.registry is not None:
        await app.state.registry.stop_all()
    for receiver in app.state.receivers.values():
        await receiver.aclose()


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Not Dead Yet? - The dead man's switch monitoring daemon."


@app.api_route(
    "/im-alive/{token}", methods=["GET", "POST"], response_class=PlainTextResponse
)
async def im_alive(token: str):
    """Accept a live sign for the app owning `token`."""
    result = await get_registry().handle_live_sign(token)
    if result is LiveSignResult.UNKNOWN_TOKEN:
        return PlainTextResponse("Unknown token.", status_code=404)
    return PlainTextResponse("Got it. Waiting 'till you die.")


@app.get("/health/liveness")
async def liveness():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/readiness")
async def readiness():
    """Ready once every watcher is running."""
    registry = app.state.registry
    if registry is None or not registry.started:
        return JSONResponse({"status": "starting"}, status_code=503)
    return {
        "status": "ok",
        "watchers": len(registry.watchers),
        "telemetry": check_otlp_health(),
    }


@app.get("/status")
async def status():
    if not app.state.config.expose_status:
        raise HTTPException(status_code=404, detail="Not Found")
    return {
        "apps": [
            {
                "name": s.name,
                "alive": s.alive,
                "last_live_sign": s.last_live_sign.isoformat(),
                "timeout_seconds": s.timeout.total_seconds(),
                "repeat_interval_seconds": s.repeat_interval.total_seconds(),
            }
            for s in get_registry().statuses()
        ]
    }


@app.get("/metrics")
async def prometheus_metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument(
        "-c",
        "--config-file",
        default=None,
        help="The config file to load, can be a .toml, .yml or .json",
    )
    parser.add_argument(
        "-l",
        "--log-level",
        choices=["debug", "info", "warn"],
        default="info",
        help="The log level",
    )
    parser.add_argument(
        "-j",
        "--log-json",
        action="store_true",
        help="Write logs as json",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, json_output=args.log_json)

    logger.info("Parsing configuration...")
    try:
        config = load_config(args.config_file)
        host, port = config.listen_address()
    except ConfigError as exc:
        logger.error(f"Cannot load configuration: {exc}")
        return 1

    app.state.config = config
    instrument_fastapi_app(app)

    logger.info(f"Listening on {host}:{port}...")
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
