#!/usr/bin/env python3
"""Main entry point for TaskLog."""

from tasklog.common.logging import configure_logging, get_logger
from tasklog.common.config import Config
from tasklog.audit.config import create_log_service

logger = get_logger(__name__)


def main():
    """Build the log service from the environment and report the tier chain."""
    config = Config()
    configure_logging(config.log_level.value)
    logger.info(f"TaskLog initialized in {config.environment.value} mode")

    service = create_log_service(config)
    logger.info(f"Task log tiers: {' -> '.join(service.writer.tier_names)}")
    if not config.primary_enabled and config.is_production:
        logger.warning("Primary tier disabled in production; all task logs go to fallback tiers")
    if service.query_engine is None:
        logger.warning("No queryable tier enabled; reads are unavailable")


if __name__ == "__main__":
    main()
