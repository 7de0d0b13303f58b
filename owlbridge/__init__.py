"""owlbridge: Salesforce to WiseOwl conversation job bridge."""

from .config import OwlBridgeConfig, load_config
from .contracts import Job, JobResult, JobState, RunDone, RunPending, TrackingRecord
from .errors import (
    OwlBridgeError,
    StoreError,
    TransientNetworkError,
    UpstreamError,
    ValidationError,
)
from .orchestrator import JobOrchestrator
from .scheduler import Scheduler
from .service import BridgeService
from .store import RecordStoreAdapter, get_connector
from .wiseowl import WiseOwlClient

__version__ = "0.1.0"
__all__ = [
    "BridgeService",
    "Job",
    "JobOrchestrator",
    "JobResult",
    "JobState",
    "OwlBridgeConfig",
    "OwlBridgeError",
    "RecordStoreAdapter",
    "RunDone",
    "RunPending",
    "Scheduler",
    "StoreError",
    "TrackingRecord",
    "TransientNetworkError",
    "UpstreamError",
    "ValidationError",
    "WiseOwlClient",
    "get_connector",
    "load_config",
]
