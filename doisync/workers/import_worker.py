"""Worker for importing all DOIs of the configured prefixes from DataCite."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from doisync.api.importer import BulkImporter
from doisync.api.pager import PrefixResult


logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    """Progress and final outcome of an import run."""
    status: str = "pending"  # pending, running, completed, cancelled, failed
    total: int = 0
    processed: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    skipped_dois: List[str] = field(default_factory=list)
    failed_dois: List[Dict[str, str]] = field(default_factory=list)
    prefix_results: List[PrefixResult] = field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Progress snapshot suitable for a cache or a JSON response."""
        return {
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "imported": self.imported,
            "skipped": self.skipped,
            "failed": self.failed,
            "skipped_dois": list(self.skipped_dois),
            "failed_dois": list(self.failed_dois),
            "failed_prefixes": [
                result.prefix for result in self.prefix_results if not result.ok
            ],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ImportWorker:
    """
    Imports DOI records one by one into the repository.

    The worker pulls records from the importer and hands each one to
    ``handler`` (the record-to-resource transformer). Records whose DOI
    already exists are skipped. Progress is reported through the optional
    ``progress`` callback every PROGRESS_INTERVAL records.
    """

    PROGRESS_INTERVAL = 50
    CANCEL_CHECK_INTERVAL = 50
    MAX_STORED_DOIS = 100

    def __init__(
        self,
        importer: BulkImporter,
        handler: Callable[[Dict[str, Any]], Any],
        exists: Optional[Callable[[str], bool]] = None,
        progress: Optional[Callable[[Dict[str, Any]], None]] = None
    ):
        """
        Initialize the import worker.

        Args:
            importer: Bulk importer providing the DOI records
            handler: Called with each new DOI record
            exists: Returns True if a DOI is already present locally
            progress: Receives progress snapshots (see ImportSummary.to_dict)
        """
        self.importer = importer
        self.handler = handler
        self.exists = exists
        self.progress = progress
        self.summary = ImportSummary()
        self._is_running = False
        self._cancel_requested = False

    def _report(self):
        if self.progress is not None:
            self.progress(self.summary.to_dict())

    def _record_failure(self, doi: str, error: str):
        self.summary.failed += 1
        if len(self.summary.failed_dois) < self.MAX_STORED_DOIS:
            self.summary.failed_dois.append({"doi": doi, "error": error})

    def _record_skip(self, doi: str):
        self.summary.skipped += 1
        if len(self.summary.skipped_dois) < self.MAX_STORED_DOIS:
            self.summary.skipped_dois.append(doi)

    def run(self) -> ImportSummary:
        """
        Execute the import.

        Returns:
            ImportSummary with the counts of this run

        Raises:
            Exception: Errors outside of individual records are re-raised
                after the summary was marked as failed
        """
        self._is_running = True
        self._cancel_requested = False
        summary = self.summary = ImportSummary(status="running", started_at=_now())

        logger.info("Starting DataCite import")

        try:
            summary.total = self.importer.total_count()
            self._report()

            for record in self.importer.import_all():
                summary.processed += 1

                if summary.processed % self.CANCEL_CHECK_INTERVAL == 1 and self._cancel_requested:
                    summary.processed -= 1
                    logger.info(f"Import cancelled after {summary.processed} records")
                    summary.status = "cancelled"
                    break

                self._process_record(record)

                if summary.processed % self.PROGRESS_INTERVAL == 0:
                    self._report()

            summary.prefix_results = list(self.importer.results)
            if summary.status == "running":
                summary.status = "completed"
            summary.completed_at = _now()

        except Exception as e:
            logger.error(f"DataCite import failed: {e}")
            summary.status = "failed"
            summary.error = str(e)
            summary.completed_at = _now()
            self._report()
            raise

        finally:
            self._is_running = False

        logger.info(
            f"DataCite import {summary.status}: {summary.imported} imported, "
            f"{summary.skipped} skipped, {summary.failed} failed "
            f"(total reported: {summary.total})"
        )
        for result in summary.prefix_results:
            if not result.ok:
                logger.warning(
                    f"Prefix {result.prefix} incomplete after {result.pages} pages: {result.error}"
                )

        self._report()
        return summary

    @staticmethod
    def _doi_of(record: Any) -> Optional[str]:
        """Return the DOI of a record, from ``attributes.doi`` or ``id``."""
        if not isinstance(record, dict):
            return None
        attributes = record.get("attributes")
        doi = attributes.get("doi") if isinstance(attributes, dict) else None
        return doi or record.get("id")

    def _process_record(self, record: Dict[str, Any]):
        """Hand one record to the handler, counting the outcome."""
        doi = self._doi_of(record)

        if not doi:
            self._record_failure("unknown", "No DOI found in record")
            return

        try:
            if self.exists is not None and self.exists(doi):
                logger.debug(f"Skipping existing DOI {doi}")
                self._record_skip(doi)
                return

            self.handler(record)
        except Exception as e:
            logger.warning(f"Failed to import DOI {doi}: {e}")
            self._record_failure(doi, str(e))
            return

        self.summary.imported += 1
        logger.debug(f"Imported DOI {doi}")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def stop(self):
        """Request the worker to stop processing."""
        logger.info("Stop requested for import worker")
        self._cancel_requested = True
