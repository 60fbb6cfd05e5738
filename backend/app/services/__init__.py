"""Services for scanning, issue tracking, and alerting."""
from .alerter import AlerterService
from .ledger import IssueLedger
from .orchestrator import ScanOrchestrator
from .pipeline import ScanPipeline
from .scheduler import SchedulerService

__all__ = ["AlerterService", "IssueLedger", "ScanOrchestrator", "ScanPipeline", "SchedulerService"]
