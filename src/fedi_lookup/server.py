"""FastAPI application exposing the lookup service.

Routes:
    GET /api/software?instance={domain}
        200 {"software": "mastodon", "version": "4.2.0", "cached": true}
        400 missing or invalid instance
        502 nodeinfo could not be fetched
    GET /healthz
        200 {"status": "ok", "cache": "enabled" | "disabled"}

Handlers are plain ``def`` functions, so each request runs on a worker
thread from the server's threadpool.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from fedi_lookup.backends.base import redact_dsn
from fedi_lookup.cache import TTLCache
from fedi_lookup.config import Settings, get_settings
from fedi_lookup.discovery import DiscoveryClient
from fedi_lookup.errors import CacheError, DiscoveryError, InvalidDomain
from fedi_lookup.service import LookupService

logger = logging.getLogger("fedi_lookup.server")


def open_cache(dsn: str) -> TTLCache | None:
    """Open the cache for ``dsn``, or return None if it cannot be opened.

    A cache that fails to initialize leaves the service running without one.
    """
    try:
        return TTLCache.from_dsn(dsn)
    except CacheError as e:
        logger.warning(f"Failed to initialize cache for {redact_dsn(dsn)!r}: {e}")
        return None


def build_service(settings: Settings) -> LookupService:
    """Wire discovery client and cache from settings."""
    discovery = DiscoveryClient(timeout=settings.discovery_timeout_s)
    cache = open_cache(settings.resolved_database_url)
    return LookupService(discovery, cache)


def create_app(
    settings: Settings | None = None,
    service: LookupService | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use; defaults to :func:`get_settings`.
        service: Pre-built lookup service. When omitted, one is built at
            startup from ``settings`` and torn down at shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = service is None
        app.state.service = service if service is not None else build_service(settings)
        logger.info(
            f"{settings.site_name} ready on {settings.domain} "
            f"(cache {'enabled' if app.state.service.cache else 'disabled'})"
        )
        try:
            yield
        finally:
            if owned:
                if app.state.service.cache is not None:
                    app.state.service.cache.close()
                app.state.service.discovery.close()

    app = FastAPI(title=settings.site_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/api/software")
    def software(
        request: Request,
        instance: str = Query(default="", description="Instance domain"),
    ) -> dict[str, Any]:
        if not instance.strip():
            raise HTTPException(status_code=400, detail="Missing instance parameter")

        lookup_service: LookupService = request.app.state.service
        try:
            result = lookup_service.lookup(instance)
        except InvalidDomain as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except DiscoveryError as e:
            raise HTTPException(
                status_code=502, detail=f"Failed to fetch nodeinfo: {e}"
            ) from e

        return result.model_dump(exclude={"stale"} if not result.stale else None)

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, str]:
        lookup_service: LookupService = request.app.state.service
        return {
            "status": "ok",
            "cache": "enabled" if lookup_service.cache is not None else "disabled",
        }

    return app
