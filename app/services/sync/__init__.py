"""External tracker sync (GitHub issues, Featurebase posts)."""
from app.services.sync.featurebase_source import FeaturebaseFetchResult, FeaturebaseSource
from app.services.sync.github_source import GitHubIssueSource, GitHubSyncError
from app.services.sync.pipeline import run_sync
from app.services.sync.reconcile import load_existing_external_rows, upsert_external_items
from app.services.sync.records import ExternalFeedbackRecord, SourceSyncSummary

__all__ = [
    "ExternalFeedbackRecord",
    "SourceSyncSummary",
    "FeaturebaseFetchResult",
    "FeaturebaseSource",
    "GitHubIssueSource",
    "GitHubSyncError",
    "load_existing_external_rows",
    "upsert_external_items",
    "run_sync",
]
