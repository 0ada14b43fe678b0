"""Main entry point for the search index sync service."""

import sys

from dotenv import load_dotenv

# Environment must be loaded before settings are read
load_dotenv()

from search_sync.config import settings  # noqa: E402
from search_sync.logging_setup import configure_logging, get_logger  # noqa: E402
from search_sync.service import main as service_main  # noqa: E402


def main():
    """Entry point that runs the asyncio service until it is signalled to stop."""
    configure_logging(settings.log_level, settings.log_format)
    log = get_logger("main")
    try:
        service_main()
    except KeyboardInterrupt:
        log.info("service_interrupted")
        sys.exit(0)
    except Exception as e:
        log.error("service_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
