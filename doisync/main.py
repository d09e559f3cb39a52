"""Main entry point for DOISYNC."""

import json
import logging
import signal
import sys

from doisync.api.exceptions import RegistryError
from doisync.api.importer import BulkImporter
from doisync.utils.settings import load_settings
from doisync.workers.import_worker import ImportWorker


def setup_logging(level: int = logging.INFO):
    """Configure logging for the application."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('doisync.log', encoding='utf-8'),
            logging.StreamHandler()
        ]
    )


def main() -> int:
    """
    Import all DOIs of the configured production prefixes.

    Records are printed as JSON lines to stdout; the summary goes to the log.

    Returns:
        Process exit code
    """
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("Starting DOISYNC import")

    try:
        settings = load_settings()
        importer = BulkImporter.from_settings(settings)
    except RegistryError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    def write_record(record):
        sys.stdout.write(json.dumps(record) + "\n")

    worker = ImportWorker(importer, handler=write_record)
    signal.signal(signal.SIGINT, lambda signum, frame: worker.stop())

    try:
        summary = worker.run()
    except RegistryError as e:
        logger.error(f"Import aborted: {e}")
        return 1
    finally:
        importer.transport.close()

    if summary.status != "completed" or any(not r.ok for r in summary.prefix_results):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
