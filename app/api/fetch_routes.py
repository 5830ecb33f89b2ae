"""
Fetch API routes
"""

from fastapi import APIRouter, Request, Response, Query
from fastapi.responses import HTMLResponse, PlainTextResponse
from loguru import logger
from typing import Optional

from app.core.exceptions import InputError, UpstreamFailure
from app.services.relay import error_page


def client_identity(request: Request) -> str:
    """Identity the cookie jar is keyed by"""
    if request.client and request.client.host:
        return request.client.host
    return request.app.state.settings.fallback_client_identity


async def fetch_proxy(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute URL to relay"),
):
    """Relay a target URL through the proxy"""

    relay = request.app.state.relay

    body = None
    if request.method == "POST":
        body = await request.body()

    try:
        result = await relay.relay(
            url,
            client_identity(request),
            method=request.method,
            body=body,
            content_type=request.headers.get("content-type"),
        )

        response = Response(content=result.body, status_code=result.status_code)
        # Upstream header bytes go out untouched, whatever their encoding
        response.raw_headers.extend(result.headers)
        relay.mark_delivered(url, result)
        return response
    except InputError as e:
        return PlainTextResponse(e.message, status_code=e.status_code)
    except UpstreamFailure as e:
        logger.error(f"Proxy error: {e.message}")
        return HTMLResponse(error_page(e.message), status_code=e.status_code)
    except Exception as e:
        relay.mark_errored(url)
        logger.exception(f"Unexpected relay error for {url}")
        return HTMLResponse(error_page(str(e)), status_code=500)


def create_router(proxy_path: str = "/fetch") -> APIRouter:
    """Router serving the relay entry point at the configured path"""
    router = APIRouter(tags=["relay"])
    router.add_api_route(proxy_path, fetch_proxy, methods=["GET", "POST"])
    return router
