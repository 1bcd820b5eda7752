"""tradecollector: order-book trade event collector.

Backfills a contract's events in fixed-size block chunks, hands over to a
live log subscription, decodes every log against the contract ABI and writes
each event exactly once to an append-only CSV file.
"""

from tradecollector.api.collect import build_collector, collect
from tradecollector.core.config import CollectorConfig
from tradecollector.orchestration.orchestrator import Collector

__version__ = "0.1.0"

__all__ = ["Collector", "CollectorConfig", "build_collector", "collect"]
