"""Core data models, configuration, errors and constants.

This package provides:
- Data models (EventLog, BlockRange, EventEnvelope, Checkpoint, State)
- Configuration classes (CollectorConfig, RetryPolicy, ExplorerConfig)
- The collector error hierarchy
"""

from tradecollector.core.config import CollectorConfig, ExplorerConfig, RetryPolicy
from tradecollector.core.models import BlockRange, Checkpoint, EventEnvelope, EventLog, State

__all__ = [
    "CollectorConfig",
    "ExplorerConfig",
    "RetryPolicy",
    "BlockRange",
    "Checkpoint",
    "EventEnvelope",
    "EventLog",
    "State",
]
