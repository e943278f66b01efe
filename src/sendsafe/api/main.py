"""SendSafe API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for the sendsafe-api console script.
"""

import logging

from sendsafe.api import create_app

logger = logging.getLogger(__name__)

# uvicorn references this as sendsafe.api.main:app
app = create_app()


def run() -> None:
    """Run the API server using uvicorn."""
    import uvicorn

    from sendsafe.core.settings import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    logger.info("Starting SendSafe API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "sendsafe.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    run()
