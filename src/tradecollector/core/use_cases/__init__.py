from tradecollector.core.use_cases.backfill import BackfillScanner
from tradecollector.core.use_cases.live import LiveListener
from tradecollector.core.use_cases.pipeline import ProcessContext, ProcessStats

__all__ = ["BackfillScanner", "LiveListener", "ProcessContext", "ProcessStats"]
