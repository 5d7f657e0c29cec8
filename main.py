"""
API client entry point.
Checks the current session against the configured API and prints its status.
"""

import asyncio
import sys

from loguru import logger

from apiclient import ApiError, ServiceError, create_client
from apiclient.settings import global_settings


def configure_logging() -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if global_settings.debug else global_settings.log_level,
    )


async def main() -> int:
    """Entry point."""
    configure_logging()
    logger.info(f"Connecting to {global_settings.api_base_url}...")

    pipeline, auth = create_client()
    pipeline.events.subscribe(lambda event: logger.warning(f"Received {event}"))

    try:
        token = await pipeline.fetch_csrf_token()
        logger.info(f"CSRF token {'ready' if token else 'unavailable'}")

        user = await auth.get_current_user()
        logger.info(f"Session valid, current user: {user}")
        return 0

    except ApiError as e:
        logger.error(f"API error {e.code} (HTTP {e.http_status}): {e.message}")
        return 1
    except ServiceError as e:
        logger.error(f"Request failed: {e}")
        return 1
    finally:
        logger.debug(f"Pipeline status: {pipeline.get_health_status()}")
        await pipeline.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
