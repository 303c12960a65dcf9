"""Star-history persistence and analytics helpers."""

from starsync.services.stars.analytics import StarAnalyticsService, parse_repository_spec
from starsync.services.stars.star_store import StarStore
from starsync.services.stars.time_series import (
    DataPoint,
    MetricType,
    ProcessedMultiRepoData,
    RepositoryDailyCounts,
    RepositorySeries,
    derive_series,
    fill_missing_days,
    process_multi_repo_data,
)

__all__ = [
    "StarAnalyticsService",
    "parse_repository_spec",
    "StarStore",
    "DataPoint",
    "MetricType",
    "ProcessedMultiRepoData",
    "RepositoryDailyCounts",
    "RepositorySeries",
    "derive_series",
    "fill_missing_days",
    "process_multi_repo_data",
]
