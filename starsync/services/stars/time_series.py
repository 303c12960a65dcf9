"""Position, speed and acceleration series derived from daily star counts."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from starsync.errors import InvalidRequest

DailyCounts = Union[Mapping[date, int], Iterable[tuple[date, int]]]


class MetricType(str, enum.Enum):
    """Derived star metrics."""

    POSITION = "position"
    SPEED = "speed"
    ACCELERATION = "acceleration"

    @classmethod
    def parse(cls, raw: Union[str, "MetricType"]) -> "MetricType":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(metric.value for metric in cls)
            raise InvalidRequest(f"unknown metric {raw!r}; expected one of: {allowed}") from exc


@dataclass(frozen=True, slots=True)
class DataPoint:
    date: date
    value: int
    days_since_start: Optional[int] = None


@dataclass(frozen=True, slots=True)
class RepositorySeries:
    owner: str
    name: str
    points: list[DataPoint] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True, slots=True)
class RepositoryDailyCounts:
    """Raw input for one repository of a comparison request."""

    owner: str
    name: str
    daily_counts: list[tuple[date, int]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AbsoluteAxis:
    min_date: date
    max_date: date


@dataclass(frozen=True, slots=True)
class RelativeAxis:
    start_date: date
    max_days: int


TimeAxis = Union[AbsoluteAxis, RelativeAxis]


@dataclass(frozen=True, slots=True)
class ProcessedMultiRepoData:
    """One metric across every requested repository, ready for rendering."""

    metric: MetricType
    series: list[RepositorySeries]
    time_axis: Optional[TimeAxis]
    start_date: Optional[date] = None

    @property
    def is_empty(self) -> bool:
        return all(not item.points for item in self.series)

    def to_dict(self) -> dict[str, Any]:
        axis: Optional[dict[str, Any]] = None
        if isinstance(self.time_axis, RelativeAxis):
            axis = {
                "mode": "relative",
                "start_date": self.time_axis.start_date.isoformat(),
                "max_days": self.time_axis.max_days,
            }
        elif isinstance(self.time_axis, AbsoluteAxis):
            axis = {
                "mode": "absolute",
                "min_date": self.time_axis.min_date.isoformat(),
                "max_date": self.time_axis.max_date.isoformat(),
            }
        return {
            "metric": self.metric.value,
            "time_axis": axis,
            "series": [
                {
                    "repository": item.label,
                    "points": [
                        {"date": point.date.isoformat(), "value": point.value, "days_since_start": point.days_since_start}
                        for point in item.points
                    ],
                }
                for item in self.series
            ],
        }


def normalize_daily_counts(daily_counts: DailyCounts) -> list[tuple[date, int]]:
    """Sort by date and merge repeated dates."""

    pairs = daily_counts.items() if isinstance(daily_counts, Mapping) else daily_counts
    merged: dict[date, int] = {}
    for day, count in pairs:
        merged[day] = merged.get(day, 0) + int(count)
    return sorted(merged.items())


def fill_missing_days(daily_counts: DailyCounts) -> list[tuple[date, int]]:
    """Insert zero counts for every absent day between the first and last date.

    A missing day means no new stars, not missing data.
    """

    ordered = normalize_daily_counts(daily_counts)
    if not ordered:
        return []

    by_date = dict(ordered)
    current, end = ordered[0][0], ordered[-1][0]
    filled: list[tuple[date, int]] = []
    while current <= end:
        filled.append((current, by_date.get(current, 0)))
        current += timedelta(days=1)
    return filled


def position_series(daily_counts: DailyCounts) -> list[DataPoint]:
    """Cumulative stars, one point per input date."""

    total = 0
    points: list[DataPoint] = []
    for day, count in normalize_daily_counts(daily_counts):
        total += count
        points.append(DataPoint(day, total))
    return points


def speed_series(daily_counts: DailyCounts) -> list[DataPoint]:
    return [DataPoint(day, count) for day, count in fill_missing_days(daily_counts)]


def acceleration_series(daily_counts: DailyCounts) -> list[DataPoint]:
    """Day-over-day change of the gap-filled daily count; the first day is 0."""

    points: list[DataPoint] = []
    previous: Optional[int] = None
    for day, count in fill_missing_days(daily_counts):
        points.append(DataPoint(day, 0 if previous is None else count - previous))
        previous = count
    return points


_DERIVERS = {
    MetricType.POSITION: position_series,
    MetricType.SPEED: speed_series,
    MetricType.ACCELERATION: acceleration_series,
}


def derive_series(
    daily_counts: DailyCounts,
    metric: Union[str, MetricType],
    *,
    relative_start: Optional[date] = None,
) -> list[DataPoint]:
    """Derive one metric; `relative_start` adds `days_since_start` to each point."""

    points = _DERIVERS[MetricType.parse(metric)](daily_counts)
    if relative_start is None:
        return points
    return [replace(point, days_since_start=(point.date - relative_start).days) for point in points]


def earliest_date(repositories: Sequence[RepositoryDailyCounts]) -> Optional[date]:
    """First star date across the whole batch."""

    firsts = [min(day for day, _ in repo.daily_counts) for repo in repositories if repo.daily_counts]
    return min(firsts) if firsts else None


def process_multi_repo_data(
    repositories: Sequence[RepositoryDailyCounts],
    metrics: Sequence[Union[str, MetricType]],
    *,
    relative: bool = False,
) -> list[ProcessedMultiRepoData]:
    """Build one processed dataset per metric for a comparison request.

    In relative mode every repository is measured from the earliest date of
    the whole batch, so series that started on different days share an axis.
    """

    parsed_metrics = [MetricType.parse(metric) for metric in metrics]
    start = earliest_date(repositories) if relative else None

    results: list[ProcessedMultiRepoData] = []
    for metric in parsed_metrics:
        series = [
            RepositorySeries(
                owner=repo.owner,
                name=repo.name,
                points=derive_series(repo.daily_counts, metric, relative_start=start),
            )
            for repo in repositories
        ]
        results.append(
            ProcessedMultiRepoData(
                metric=metric,
                series=series,
                time_axis=_time_axis(series, start),
                start_date=start,
            )
        )
    return results


def _time_axis(series: Sequence[RepositorySeries], start: Optional[date]) -> Optional[TimeAxis]:
    dates = [point.date for item in series for point in item.points]
    if not dates:
        return None
    if start is not None:
        return RelativeAxis(start_date=start, max_days=(max(dates) - start).days)
    return AbsoluteAxis(min_date=min(dates), max_date=max(dates))


def format_relative_time_label(days: int) -> str:
    if days < 30:
        return f"{days}d"
    if days < 365:
        return f"{days // 30}m"
    return f"{days // 365}y"
