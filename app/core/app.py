"""
Main FastAPI Application
Wires the relay engine, cookie jars and keep-alive task to the HTTP endpoints
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, PlainTextResponse
from contextlib import asynccontextmanager
from typing import Optional
import httpx
from loguru import logger

from config.settings import Settings, get_settings
from app.api import fetch_routes
from app.core.keepalive import KeepAlivePinger
from app.services.cookie_jar import CookieJarStore
from app.services.relay import RelayEngine, create_http_client


LANDING_PAGE = """<html><body style="background:#1a1200;color:#f5c842;
    font-family:sans-serif;display:flex;flex-direction:column;
    align-items:center;justify-content:center;height:100vh;
    gap:12px;text-align:center;padding:20px;">
    <div style="font-size:64px">🧈</div>
    <h1>{app_name}</h1>
    <p style="color:#c8a040">Running! Use {proxy_path}?url=https://example.com</p>
  </body></html>"""


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure FastAPI application"""

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")

        cookie_jars = CookieJarStore(
            ttl=settings.cookie_jar_ttl,
            max_entries=settings.cookie_jar_max_entries,
        )
        relay = RelayEngine(settings, create_http_client(settings, transport), cookie_jars)
        pinger = KeepAlivePinger(
            settings.self_url + "/ping",
            interval=settings.keepalive_interval,
            timeout=settings.keepalive_timeout,
        )

        # Store in app state for access in routes
        app.state.settings = settings
        app.state.cookie_jars = cookie_jars
        app.state.relay = relay
        app.state.pinger = pinger

        if settings.keepalive_enabled:
            pinger.start()

        logger.info("Application startup complete")

        yield

        logger.info("Shutting down application...")
        await pinger.stop()
        await relay.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    app.include_router(fetch_routes.create_router(settings.proxy_path))

    @app.get("/", response_class=HTMLResponse)
    async def root():
        """Serve the landing page"""
        return LANDING_PAGE.format(app_name=settings.app_name, proxy_path=settings.proxy_path)

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping():
        """Liveness check"""
        logger.info("[ping] pong")
        return "🧈"

    return app


# Create app instance
app = create_app()
