"""Plotly rendering of processed star metrics."""

from __future__ import annotations

from dataclasses import dataclass, field

import plotly.graph_objects as go

from starsync.config.settings import settings
from starsync.services.stars.time_series import (
    MetricType,
    ProcessedMultiRepoData,
    RelativeAxis,
    format_relative_time_label,
)

DAYS_PER_YEAR = 365.25
RELATIVE_TICK_COUNT = 6

Y_AXIS_TITLES = {
    MetricType.POSITION: "Total Stars",
    MetricType.SPEED: "Daily Stars",
    MetricType.ACCELERATION: "Star Acceleration",
}


@dataclass(slots=True)
class ChartConfig:
    width: int = field(default_factory=lambda: settings.CHART_WIDTH)
    height: int = field(default_factory=lambda: settings.CHART_HEIGHT)
    title: str = "Repository Star Metrics"
    show_legend: bool = True
    colors: list[str] = field(
        default_factory=lambda: [
            "#1f77b4",
            "#d62728",
            "#2ca02c",
            "#e377c2",
            "#17becf",
            "#ff7f0e",
            "#9467bd",
            "#ffc0cb",
        ]
    )


@dataclass(frozen=True, slots=True)
class RenderedChart:
    content: bytes
    media_type: str = "text/html"


def calculate_y_range(data: ProcessedMultiRepoData) -> tuple[float, float]:
    """Pad the value range by 10%; only cumulative counts are floored at zero."""

    values = [point.value for item in data.series for point in item.points]
    if not values:
        return 0.0, 10.0

    low, high = min(values), max(values)
    padding = (high - low) * 0.1
    y_min = low - padding
    if data.metric is MetricType.POSITION:
        y_min = max(y_min, 0.0)
    return float(y_min), float(high + padding)


def relative_ticks(max_days: int, count: int = RELATIVE_TICK_COUNT) -> tuple[list[float], list[str]]:
    """Evenly spaced tick positions (years) and their day/month/year labels."""

    step = max(1, -(-max_days // max(count - 1, 1)))
    days = list(range(0, max_days + 1, step))
    return [day / DAYS_PER_YEAR for day in days], [format_relative_time_label(day) for day in days]


def build_figure(data: ProcessedMultiRepoData, config: ChartConfig | None = None) -> go.Figure:
    config = config or ChartConfig()
    fig = go.Figure()

    if data.is_empty or data.time_axis is None:
        fig.add_annotation(
            text=f"No data available for: {config.title}",
            x=0.5,
            y=0.5,
            xref="paper",
            yref="paper",
            showarrow=False,
            font=dict(size=18, color="#666666"),
        )
        fig.update_xaxes(visible=False)
        fig.update_yaxes(visible=False)
        fig.update_layout(width=config.width, height=config.height, plot_bgcolor="white")
        return fig

    relative = isinstance(data.time_axis, RelativeAxis)
    for index, item in enumerate(data.series):
        if relative:
            x = [(point.days_since_start or 0) / DAYS_PER_YEAR for point in item.points]
        else:
            x = [point.date for point in item.points]
        fig.add_trace(
            go.Scatter(
                x=x,
                y=[point.value for point in item.points],
                name=item.label,
                mode="lines",
                line=dict(color=config.colors[index % len(config.colors)], width=2),
            )
        )

    fig.update_layout(
        title=config.title,
        width=config.width,
        height=config.height,
        showlegend=config.show_legend,
        plot_bgcolor="white",
        legend=dict(yanchor="top", y=0.99, xanchor="left", x=0.01),
    )
    if relative:
        tickvals, ticktext = relative_ticks(data.time_axis.max_days)
        fig.update_xaxes(title_text="Time Since Start", tickvals=tickvals, ticktext=ticktext)
    else:
        fig.update_xaxes(title_text="Date")
    fig.update_yaxes(title_text=Y_AXIS_TITLES[data.metric], range=list(calculate_y_range(data)))
    return fig


def render_multi_repo_chart(data: ProcessedMultiRepoData, config: ChartConfig | None = None) -> RenderedChart:
    html = build_figure(data, config).to_html(full_html=True, include_plotlyjs="cdn")
    return RenderedChart(content=html.encode("utf-8"))
