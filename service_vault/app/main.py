"""
Vault service for the Vault Access Layer.
"""

import asyncio
import contextlib
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .domain import DispatchResult, RequestDispatcher, VaultOperation
from .ratelimit import FixedWindowRateLimiter
from .vault import VaultStore

SERVICE_NAME = "vault"
DEFAULT_PORT = 8080


class VaultService(BaseService):
    """Vault service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config or get_config(SERVICE_NAME, DEFAULT_PORT))

        self.rate_limiter = FixedWindowRateLimiter(
            limit=self.config.rate_limit_requests,
            window_seconds=self.config.rate_limit_window_seconds,
            max_identities=self.config.rate_limit_max_identities,
            shards=self.config.rate_limit_shards,
            on_evict=lambda count: self.metrics.increment_counter("rate_limit_evictions_total", amount=count),
        )
        self.store = VaultStore(shards=self.config.vault_shards)
        self.dispatcher = RequestDispatcher(
            self.rate_limiter,
            self.store,
            metrics=self.metrics,
            auth_schemes=self.config.auth_schemes,
        )
        self._sweeper: Optional[asyncio.Task] = None

        self._setup_vault_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.vault_service = self

    def _setup_vault_routes(self):
        """Set up vault-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Vault Access Layer - Vault Service",
                "version": "1.0.0"
            }

        @self.app.post("/vault")
        async def create_vault_item(request: Request):
            """Store a new secret for the caller."""
            return await self._dispatch(request, VaultOperation.CREATE)

        @self.app.get("/vault/items")
        async def list_vault_items(request: Request):
            """List the caller's secrets."""
            return await self._dispatch(request, VaultOperation.LIST)

        @self.app.put("/vault/items/{item_id}")
        async def update_vault_item(item_id: str, request: Request):
            """Replace the payload of one of the caller's secrets."""
            return await self._dispatch(request, VaultOperation.UPDATE, item_id=item_id)

        @self.app.exception_handler(StarletteHTTPException)
        async def vault_http_exception_handler(request: Request, exc: StarletteHTTPException):
            """Router errors (404, 405) on vault paths still report quota."""
            response = await http_exception_handler(request, exc)
            path = request.url.path
            if path == "/vault" or path.startswith("/vault/"):
                headers = await run_in_threadpool(
                    self.dispatcher.quota_headers, request.headers.get("authorization")
                )
                response.headers.update(headers)
            return response

    async def _dispatch(self, request: Request, operation: VaultOperation,
                        item_id: Optional[str] = None) -> JSONResponse:
        body = b""
        if operation is not VaultOperation.LIST:
            body = await request.body()

        # The dispatcher is synchronous; run it on the worker pool so requests proceed in parallel
        result = await run_in_threadpool(
            self.dispatcher.dispatch,
            operation,
            request.headers.get("authorization"),
            body,
            item_id,
        )
        return self._to_response(result)

    def _to_response(self, result: DispatchResult) -> JSONResponse:
        return JSONResponse(
            status_code=result.status_code,
            content=result.body,
            headers=result.headers,
        )

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report rate limiter and store occupancy."""
        self._refresh_metrics()
        return {
            "rate_limiter": self.rate_limiter.get_global_stats(),
            "vault_store": {"items": self.store.count()},
        }

    def _refresh_metrics(self):
        self.metrics.set_gauge("rate_limit_tracked_identities", self.rate_limiter.tracked_identities())
        self.metrics.set_gauge("vault_items", self.store.count())

    async def _on_startup(self):
        self._sweeper = asyncio.create_task(self._sweep_rate_limit_windows())

    async def _on_shutdown(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    async def _sweep_rate_limit_windows(self):
        """Periodically drop windows that have fully elapsed."""
        interval = self.config.rate_limit_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            await self._sweep_once()

    async def _sweep_once(self) -> int:
        # Takes every shard and window lock, so keep it off the event loop
        removed = await run_in_threadpool(self.rate_limiter.sweep_expired)
        if removed:
            self.metrics.increment_counter("rate_limit_swept_total", amount=removed)
        return removed


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = VaultService(config)
    return service.app


def run():
    """Run the vault service with configuration from the environment."""
    VaultService().run()


if __name__ == "__main__":
    run()
