from services.record_store import (
    SERVER_TIMESTAMP,
    DatabaseRecordStore,
    Document,
    MemoryRecordStore,
    RecordStore,
    StaleRecordError,
    StorageError,
    Subscription,
)
from services.activity import ActivityTracker, TrackingError
from services.wizard import WizardEngine, WizardManager, WizardStateError
from services.matching import MatchingEngine, PendingMatches
from services.aggregation import AggregationEngine, DashboardState, compute_snapshot

__all__ = [
    'SERVER_TIMESTAMP',
    'DatabaseRecordStore',
    'Document',
    'MemoryRecordStore',
    'RecordStore',
    'StaleRecordError',
    'StorageError',
    'Subscription',
    'ActivityTracker',
    'TrackingError',
    'WizardEngine',
    'WizardManager',
    'WizardStateError',
    'MatchingEngine',
    'PendingMatches',
    'AggregationEngine',
    'DashboardState',
    'compute_snapshot',
]
