"""Workers package for long-running registry jobs."""

from doisync.workers.import_worker import ImportSummary, ImportWorker

__all__ = ['ImportSummary', 'ImportWorker']
