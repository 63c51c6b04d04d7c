# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Read-only status API for the worker: loop health, hubs, runtime metrics, logs."""

import collections
import json
import logging
import time

from aiohttp import web

from .health import HealthEvaluator
from .service import BackgroundService
from .store import Store

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# RingBufferHandler: in-memory log capture for /api/logs
# ---------------------------------------------------------------------------

class RingBufferHandler(logging.Handler):
    """Logging handler that keeps the most recent records in a bounded deque."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self._records: collections.deque = collections.deque(maxlen=capacity)

    def emit(self, record):
        try:
            self._records.append({
                "ts": record.created,
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)

    def get_records(self, level: str | None = None, limit: int = 200,
                    search: str | None = None) -> list[dict]:
        """Return filtered log records, newest first."""
        level_num = getattr(logging, level.upper(), 0) if level else 0
        results = []
        for rec in reversed(self._records):
            if level_num and getattr(logging, rec["level"], 0) < level_num:
                continue
            if search and search.lower() not in rec["message"].lower():
                continue
            results.append(rec)
            if len(results) >= limit:
                break
        return results


class StatusServer:
    def __init__(self, store: Store, health: HealthEvaluator, port: int = 8080,
                 services: dict[str, BackgroundService] | None = None,
                 log_buffer: RingBufferHandler | None = None,
                 version: str = "0.0.0"):
        self._store = store
        self._health = health
        self._port = port
        self._services = services or {}
        self._log_buffer = log_buffer
        self._version = version
        self._start_time = time.time()

        self._app = web.Application()
        self._runner: web.AppRunner | None = None
        self._setup_routes()

    def _setup_routes(self):
        self._app.router.add_get("/api/health", self._handle_health)
        self._app.router.add_get("/api/hubs", self._handle_hubs)
        self._app.router.add_get("/api/system", self._handle_system)
        self._app.router.add_get("/api/logs", self._handle_logs)

    def _json(self, data, status=200):
        return web.Response(
            text=json.dumps(data),
            content_type="application/json",
            status=status,
        )

    async def _handle_health(self, request):
        """Health check for container HEALTHCHECK and monitoring."""
        issues = []
        services = {}
        for name, service in self._services.items():
            services[name] = {"running": service.running}
            if not service.running:
                issues.append(f"{name} loop is not running")

        try:
            with self._store.session() as db:
                hubs = db.get_all_hubs()
        except Exception as e:
            logger.exception("Health check could not read the database")
            issues.append(f"Database unavailable: {e}")
            hubs = []

        attention = [h.bridge_id for h in hubs
                     if self._health.evaluate(h)["needs_attention"]]

        healthy = not issues
        return self._json({
            "status": "healthy" if healthy else "degraded",
            "issues": issues,
            "services": services,
            "hub_count": len(hubs),
            "hubs_needing_attention": attention,
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "version": self._version,
        }, 200 if healthy else 503)

    async def _handle_hubs(self, request):
        """GET /api/hubs: every hub with its health classification."""
        with self._store.session() as db:
            hubs = db.get_all_hubs()
        return self._json({"hubs": [self._health.evaluate(h) for h in hubs]})

    async def _handle_system(self, request):
        """GET /api/system: runtime metrics recorded by the loops."""
        with self._store.session() as db:
            info = db.get_system_info()
        return self._json({
            "version": self._version,
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "info": info,
        })

    async def _handle_logs(self, request):
        """GET /api/logs: log records from the ring buffer."""
        if not self._log_buffer:
            return self._json({"error": "log buffer not available"}, 503)

        try:
            limit = min(int(request.query.get("limit", "200")), 1000)
        except ValueError:
            return self._json({"error": "limit must be an integer"}, 400)
        level = request.query.get("level")
        search = request.query.get("search")

        records = self._log_buffer.get_records(level=level, limit=limit, search=search)
        return self._json({"logs": records, "count": len(records)})

    async def start(self):
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self._port)
        await site.start()
        logger.info("Status API started on http://0.0.0.0:%d", self._port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
