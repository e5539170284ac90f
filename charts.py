"""
Auxiliary charts driven directly off the normalized indicator table.

All builders are stateless: they read the table they are given and return a
new figure. None of them write back into the dataset.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from health_data import NAME_COL


HISTOGRAM_BINS = 20

POVERTY = "poverty"
BLOOD_PRESSURE = "percent_high_blood_pressure"

HISTOGRAMS = (
    (POVERTY, "Poverty Rate (%)"),
    (BLOOD_PRESSURE, "High Blood Pressure (%)"),
)

SCATTER_DEFAULTS = (POVERTY, BLOOD_PRESSURE)

GROUPED_BAR_SERIES = {
    POVERTY: ("Poverty (%)", "steelblue"),
    BLOOD_PRESSURE: ("High BP (%)", "orange"),
}

_AXIS = dict(showgrid=True, gridwidth=1, gridcolor="#f3f4f6", tickfont=dict(size=12))


def _finite(s: pd.Series) -> pd.Series:
    s = pd.to_numeric(s, errors="coerce")
    return s[np.isfinite(s)]


def _base_layout(fig: go.Figure, title: str, x_title: str, y_title: str) -> go.Figure:
    fig.update_layout(
        title=dict(text=title, x=0.5, xanchor="center", font=dict(size=14)),
        margin={"r": 30, "t": 40, "l": 50, "b": 40},
        plot_bgcolor="rgba(0,0,0,0)",
        paper_bgcolor="rgba(0,0,0,0)",
        font=dict(family="Inter, system-ui, sans-serif", size=12),
        xaxis=dict(title=x_title, **_AXIS),
        yaxis=dict(title=y_title, **_AXIS),
    )
    return fig


def make_histogram(indicators: pd.DataFrame, key: str, title: str) -> go.Figure:
    """Distribution of one measure in up to 20 bins (missing values skipped)."""
    values = _finite(indicators[key])

    fig = go.Figure()
    if not values.empty:
        fig.add_trace(go.Histogram(
            x=values,
            nbinsx=HISTOGRAM_BINS,
            marker_color="steelblue",
            marker_line=dict(width=1, color="#ffffff"),
            name=key,
            hovertemplate="%{x}: %{y} counties<extra></extra>",
        ))
    return _base_layout(fig, title, title, "Counties")


def make_scatter(indicators: pd.DataFrame, x_key: str, y_key: str) -> go.Figure:
    """One point per county with both measures present."""
    xs = pd.to_numeric(indicators[x_key], errors="coerce")
    ys = pd.to_numeric(indicators[y_key], errors="coerce")
    keep = np.isfinite(xs) & np.isfinite(ys)

    fig = go.Figure(go.Scatter(
        x=xs[keep],
        y=ys[keep],
        mode="markers",
        marker=dict(size=6, color="blue", opacity=0.6),
        text=indicators.loc[keep, NAME_COL],
        hovertemplate="<b>%{text}</b><br>" + x_key + ": %{x}<br>" + y_key + ": %{y}<extra></extra>",
        name=f"{x_key} vs. {y_key}",
    ))
    return _base_layout(fig, f"Scatter: {x_key} vs. {y_key}", x_key, y_key)


def top_counties(indicators: pd.DataFrame, n: int = 10) -> pd.DataFrame:
    """Counties with both poverty and blood pressure present, highest poverty first."""
    df = indicators[[NAME_COL, POVERTY, BLOOD_PRESSURE]].copy()
    df = df[(df[POVERTY] >= 0) & (df[BLOOD_PRESSURE] >= 0)]
    return df.sort_values(POVERTY, ascending=False, kind="mergesort").head(n)


def make_grouped_bar(indicators: pd.DataFrame, top_n: int = 10) -> go.Figure:
    """Poverty vs high blood pressure, side by side for the top-N poverty counties."""
    top = top_counties(indicators, top_n)

    fig = go.Figure()
    for key, (label, color) in GROUPED_BAR_SERIES.items():
        fig.add_trace(go.Bar(
            x=top[NAME_COL],
            y=top[key],
            name=label,
            marker_color=color,
            hovertemplate="<b>%{x}</b><br>" + label + ": %{y}<extra></extra>",
        ))

    _base_layout(fig, f"Top {top_n} Counties: Poverty vs High Blood Pressure", "County", "Rate (%)")
    fig.update_layout(
        barmode="group",
        bargap=0.2,
        bargroupgap=0.05,
        margin={"r": 30, "t": 40, "l": 60, "b": 60},
        xaxis_tickangle=-45,
        legend=dict(orientation="v", yanchor="top", y=1, xanchor="left", x=0.01, font=dict(size=12)),
    )
    return fig
