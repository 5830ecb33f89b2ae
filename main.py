"""
Main entry point for Butter Proxy
Run this file to start the application
"""

import uvicorn
from loguru import logger
import sys

from config.settings import get_settings

settings = get_settings()

# Configure logging
logger.remove()
logger.add(
    sys.stdout,
    format=settings.log_format,
    level=settings.log_level,
    colorize=True
)

if settings.log_file:
    logger.add(
        settings.log_file,
        format=settings.log_format,
        level=settings.log_level,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
        compression="zip"
    )


def main():
    """Main function to run the application"""

    logger.info(f"🧈 {settings.app_name} on port {settings.port}")
    logger.info(f"  • Proxy entry: {settings.proxy_path}?url=<absolute-url>")
    logger.info(f"  • Timeout: {settings.request_timeout}s, max redirects: {settings.max_redirects}")
    if settings.keepalive_enabled:
        logger.info(f"  • Keep-alive: {settings.self_url}/ping every {settings.keepalive_interval}s")

    uvicorn.run(
        "app.core.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        workers=1 if settings.reload else settings.workers,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
        forwarded_allow_ips=settings.forwarded_allow_ips,
        access_log=True
    )


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    except Exception as e:
        logger.error(f"Application error: {str(e)}")
        sys.exit(1)
