"""HTTP surface of the relay using FastAPI."""
from datetime import datetime
from itertools import groupby
from typing import List, Optional, Tuple
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.concurrency import run_in_threadpool
import json
import logging
import threading
import time

from pingpong.config import ServerConfig
from pingpong.counters import PING_LABELS, SelfMetrics
from pingpong.errors import MalformedInput, MetricError, UnknownMetric
from pingpong.registry import MetricRegistry
from pingpong.translator import (
    JSON_CONTENT_TYPE, TEXT_CONTENT_TYPES, decode, encode_families, encode_json
)

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = (JSON_CONTENT_TYPE,) + TEXT_CONTENT_TYPES

PING_DEFAULTS = {
    "path": "/tmp/kafka_upload",
    "instance": "pingpong",
    "receiver": "default-receiver-sre",
}

WEBHOOK_PATHS = ["/webhook", "/v2/enqueue", "/slack", "/pagerduty"]


def rfc1123_now() -> str:
    return datetime.now().astimezone().strftime("%a, %d %b %Y %H:%M:%S %Z")


def media_type(request: Request) -> str:
    """Content-Type of a request without its parameters, lower-cased."""
    header = request.headers.get("content-type", "")
    return header.split(";", 1)[0].strip().lower()


def status_for(lines: List[str], errors: List[MetricError]) -> int:
    """Success only when something was recorded or nothing failed."""
    if lines or not errors:
        return 200
    if all(isinstance(e, UnknownMetric) for e in errors):
        return 404
    return 400


def family_of(line: str) -> str:
    return line.split("{", 1)[0].split(" ", 1)[0]


def format_created(lines: List[str]) -> str:
    """One `created metric...` block per family, each closed by a blank line."""
    return "".join(
        "created metric...\n" + "".join(block) + "\n"
        for _, block in groupby(lines, key=family_of)
    )


def format_errors(errors: List[MetricError]) -> str:
    return "".join(f"# ERROR {e}\n" for e in errors)


def pretty_json(data: bytes) -> str:
    return json.dumps(json.loads(data), indent=4)


async def dump_request(request: Request, body: bool) -> str:
    """Render a request the way it arrived on the wire."""
    target = request.url.path
    if request.url.query:
        target += f"?{request.url.query}"
    version = request.scope.get("http_version", "1.1")
    out = [f"{request.method} {target} HTTP/{version}\r\n"]
    for name, value in request.headers.items():
        out.append(f"{name.title()}: {value}\r\n")
    out.append("\r\n")
    if body:
        out.append((await request.body()).decode("utf-8", errors="replace"))
    return "".join(out)


class MetricsAPI:
    """FastAPI application wiring HTTP requests to a metric registry."""

    def __init__(self, registry: MetricRegistry, self_metrics: Optional[SelfMetrics] = None):
        """
        Initialize the API.

        Args:
            registry: Registry that owns every dynamic metric
            self_metrics: Self-monitoring counters; created on the
                registry's counter backend when omitted
        """
        self.registry = registry
        self.self_metrics = self_metrics or SelfMetrics(registry=registry.counters.registry)
        self.app = FastAPI(title="pingpong metrics relay")
        self.start_time = time.time()

        # Setup routes
        self._setup_routes()

    async def _ingest(self, request: Request, operation: str) -> Tuple[List[str], List[MetricError]]:
        """Decode a create/update payload and apply it to the registry."""
        if not request.headers.get("content-type"):
            raise HTTPException(status_code=400, detail="Content-Type header required")

        content_type = media_type(request)
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise HTTPException(status_code=415, detail="Invalid Content-Type")

        body = await request.body()
        try:
            families, decode_errors = decode(content_type, body)
        except MalformedInput as e:
            logger.warning(f"{operation}: {e}")
            self.self_metrics.record_batch(operation, 0, [e])
            raise HTTPException(status_code=400, detail=f"Error parsing metrics: {e.message}")

        apply = self.registry.create if operation == "create" else self.registry.update
        result = await run_in_threadpool(apply, families)

        errors = decode_errors + result.errors
        self.self_metrics.record_batch(operation, len(result.lines), errors)
        self.self_metrics.set_registered_families(len(self.registry))
        logger.info(
            f"{operation}: {len(families)} families, "
            f"{len(result.lines)} samples recorded, {len(errors)} rejected"
        )
        return result.lines, errors

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/")
        async def root(request: Request):
            """Echo the request line and headers."""
            logger.debug("root called")
            return PlainTextResponse(await dump_request(request, body=False))

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {
                "status": "healthy",
                "timestamp": time.time(),
                "uptime_seconds": time.time() - self.start_time,
                "metric_families": len(self.registry),
            }

        @self.app.get("/ping")
        async def ping(request: Request):
            """Count a ping, labeled from the query string."""
            labels = {name: request.query_params.get(name, "") for name in PING_LABELS}
            for name, default in PING_DEFAULTS.items():
                labels[name] = labels[name] or default
            labels["app"] = "pingpong"

            self.self_metrics.record_ping(labels)
            now = datetime.now().astimezone()
            logger.info(f"Ping request handled at {now}")
            return PlainTextResponse(f"PONG - {now}\n")

        @self.app.get("/time")
        async def current_time():
            return PlainTextResponse(f"The time is: {rfc1123_now()}\n")

        @self.app.api_route("/echo", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
        async def echo(request: Request):
            """Echo the full request including its body."""
            dumped = await dump_request(request, body=True)
            return PlainTextResponse(f"{dumped}The time is: {rfc1123_now()}\n")

        @self.app.post("/create")
        async def create(request: Request):
            """Create metric families and add sample values to their counters."""
            lines, errors = await self._ingest(request, "create")
            body = format_created(lines) + format_errors(errors)
            return PlainTextResponse(body, status_code=status_for(lines, errors))

        @self.app.post("/update")
        async def update(request: Request):
            """Increment existing counters by one."""
            lines, errors = await self._ingest(request, "update")
            body = "".join(lines) + format_errors(errors)
            return PlainTextResponse(body, status_code=status_for(lines, errors))

        @self.app.get("/metrics")
        async def metrics(format: str = "text"):
            """Expose every dynamic metric."""
            families = await run_in_threadpool(self.registry.snapshot)
            if format == "json":
                return Response(encode_json(families), media_type=JSON_CONTENT_TYPE)
            return PlainTextResponse(encode_families(families))

        @self.app.get("/metrics.d")
        async def metrics_d():
            """Expose the counter backend, including process and self metrics."""
            return Response(self.registry.counters.exposition(), media_type=CONTENT_TYPE_LATEST)

        async def webhook(request: Request):
            """Log an incoming webhook."""
            if media_type(request) != JSON_CONTENT_TYPE:
                raise HTTPException(status_code=415, detail="Content-Type must be application/json")

            body = await request.body()
            headers = await dump_request(request, body=False)
            try:
                pretty_body = pretty_json(body)
            except ValueError as e:
                logger.error(f"Error formatting JSON: {e}")
                pretty_body = body.decode("utf-8", errors="replace")

            logger.info(f"Webhook request:\nHeaders:\n{headers.strip()}\n\nBody:\n{pretty_body}")
            return PlainTextResponse("")

        for path in WEBHOOK_PATHS:
            self.app.add_api_route(path, webhook, methods=["POST"])

    def run(self, server: ServerConfig):
        """Run the HTTP server and, unless disabled, the HTTPS server."""
        import uvicorn

        listeners = [
            uvicorn.Config(self.app, host=server.bind_address, port=server.port, log_level="info")
        ]
        if not server.disable_tls:
            listeners.append(uvicorn.Config(
                self.app,
                host=server.bind_address,
                port=server.port_tls,
                ssl_keyfile=server.server_key,
                ssl_certfile=server.server_cert,
                log_level="info"
            ))

        def serve(config):
            scheme = "https" if config.ssl_certfile else "http"
            logger.info(f"Starting {scheme} server on {config.host}:{config.port}")
            uvicorn.Server(config).run()

        def serve_in_background(config):
            try:
                serve(config)
            except Exception as e:
                logger.error(f"HTTPS server error: {e}", exc_info=True)

        threads = [
            threading.Thread(target=serve_in_background, args=(config,), daemon=True)
            for config in listeners[1:]
        ]
        for thread in threads:
            thread.start()

        serve(listeners[0])
