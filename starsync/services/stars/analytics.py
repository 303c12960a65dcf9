"""Comparison analytics over persisted star history."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

from starsync.config.settings import settings
from starsync.errors import InvalidRequest
from starsync.services.stars.chart import ChartConfig, RenderedChart, render_multi_repo_chart
from starsync.services.stars.time_series import (
    MetricType,
    ProcessedMultiRepoData,
    RepositoryDailyCounts,
    process_multi_repo_data,
)

logger = logging.getLogger(__name__)

RepositorySpec = Union[str, tuple[str, str]]


def parse_repository_spec(raw: Any) -> tuple[str, str]:
    """Accept `"owner/name"`, `(owner, name)` or `{"owner": .., "name": ..}`."""

    if isinstance(raw, dict):
        owner, name = raw.get("owner"), raw.get("name")
    elif isinstance(raw, (tuple, list)) and len(raw) == 2:
        owner, name = raw
    elif isinstance(raw, str) and raw.count("/") == 1:
        owner, name = raw.split("/", 1)
    else:
        raise InvalidRequest(f"invalid repository {raw!r}; expected owner/name")

    owner = str(owner or "").strip()
    name = str(name or "").strip()
    if not owner or not name:
        raise InvalidRequest(f"invalid repository {raw!r}; owner and name are required")
    return owner, name


class StarAnalyticsService:
    """Validates comparison requests and derives metrics from the star store."""

    def __init__(self, store: Any, *, max_repositories: Optional[int] = None) -> None:
        self._store = store
        self._max_repositories = max_repositories or settings.STAR_COMPARE_MAX_REPOSITORIES

    def validate(
        self,
        repositories: Sequence[Any],
        metrics: Sequence[Union[str, MetricType]],
    ) -> tuple[list[tuple[str, str]], list[MetricType]]:
        if not repositories:
            raise InvalidRequest("at least one repository is required")
        if len(repositories) > self._max_repositories:
            raise InvalidRequest(
                f"{len(repositories)} repositories requested; at most {self._max_repositories} can be compared"
            )
        if not metrics:
            raise InvalidRequest("at least one metric is required")
        return [parse_repository_spec(repo) for repo in repositories], [MetricType.parse(metric) for metric in metrics]

    def build(
        self,
        repositories: Sequence[Any],
        metrics: Sequence[Union[str, MetricType]],
        *,
        relative: bool = False,
    ) -> list[ProcessedMultiRepoData]:
        specs, parsed_metrics = self.validate(repositories, metrics)
        inputs = [self._load(owner, name) for owner, name in specs]
        return process_multi_repo_data(inputs, parsed_metrics, relative=relative)

    def render(
        self,
        repositories: Sequence[Any],
        metric: Union[str, MetricType],
        *,
        relative: bool = False,
        config: Optional[ChartConfig] = None,
    ) -> RenderedChart:
        data = self.build(repositories, [metric], relative=relative)[0]
        if config is None:
            config = ChartConfig(title=f"{', '.join(item.label for item in data.series)} - {data.metric.value}")
        return render_multi_repo_chart(data, config)

    def _load(self, owner: str, name: str) -> RepositoryDailyCounts:
        repository = self._store.get_repository(owner, name)
        if repository is None:
            logger.info("No persisted star history", extra={"repo": f"{owner}/{name}"})
            return RepositoryDailyCounts(owner=owner, name=name)
        return RepositoryDailyCounts(owner=owner, name=name, daily_counts=self._store.get_daily_counts(repository.id))
