"""Durable event batching and delivery."""

__version__ = "0.1.0"

from .bootstrap import Pipeline, build_pipeline  # noqa: E402
from .config_manager.analytics_config import (  # noqa: E402
    AnalyticsConfig,
    ClientConfig,
    StoreConfig,
)
from .models import DataResult, DeliveryOutcome, FailureReason, OutcomeKind  # noqa: E402
from .storage_management.directory_store import DirectoryStore  # noqa: E402
from .upload_management.http_client import HTTPClient  # noqa: E402
from .upload_management.upload_manager import UploadManager  # noqa: E402

__all__ = [
    "AnalyticsConfig",
    "ClientConfig",
    "DataResult",
    "DeliveryOutcome",
    "DirectoryStore",
    "FailureReason",
    "HTTPClient",
    "OutcomeKind",
    "Pipeline",
    "StoreConfig",
    "UploadManager",
    "build_pipeline",
]
