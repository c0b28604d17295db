"""
Presence resolver entry point
Resolves the capabilities of the contacts given on the command line
"""

import sys
import threading
from datetime import timedelta

from loguru import logger

from presence.request import CapabilityRecord, ErrorCode, RequestManager
from presence.services import CapabilityCache, HttpCapabilityQuery
from presence.settings import global_settings


class LoggingCallback:
    """Logs every result and signals when the request ends."""

    def __init__(self):
        self.done = threading.Event()
        self.failed = False

    def on_capabilities_received(self, records: list[CapabilityRecord]) -> None:
        for record in records:
            logger.info(
                f"{record.contact_uri}: {record.request_result.value} "
                f"({record.source_type.value}) features={record.features}"
            )

    def on_complete(self) -> None:
        logger.info("Request completed")
        self.done.set()

    def on_error(self, error_code: ErrorCode, retry_after_ms: int) -> None:
        logger.error(f"Request failed: {error_code.name}, retry after {retry_after_ms}ms")
        self.failed = True
        self.done.set()


def main(argv: list[str]) -> int:
    """Resolve the contacts given on the command line."""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)

    if not argv:
        logger.error("Usage: python main.py <contact-uri> [<contact-uri> ...]")
        return 2

    if not global_settings.presence_server_url:
        logger.error("PRESENCE_SERVER_URL is not configured")
        return 2

    cache = CapabilityCache(
        max_size=global_settings.capability_cache_max_size,
        capability_ttl=timedelta(seconds=global_settings.capability_cache_ttl_seconds),
        availability_ttl=timedelta(
            seconds=global_settings.availability_cache_ttl_seconds
        ),
        debug=global_settings.cache_debug,
    )
    query = HttpCapabilityQuery(
        global_settings.presence_server_url,
        timeout=global_settings.presence_request_timeout,
    )
    manager = RequestManager(global_settings.subscription_id, cache, query)
    callback = LoggingCallback()

    try:
        task_id = manager.send_capability_request(argv, callback)
        logger.info(f"Started request taskId={task_id} for {len(argv)} contacts")

        if not callback.done.wait(global_settings.presence_request_timeout + 5):
            logger.error(f"Request taskId={task_id} did not finish in time")
            manager.discard_request(task_id)
            return 1
        return 1 if callback.failed else 0

    except ValueError as e:
        logger.error(f"Invalid contact: {e}")
        return 2
    finally:
        manager.close()
        query.close()


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
