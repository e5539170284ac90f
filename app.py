"""
U.S. County Health Dashboard
- Geometry: data/map.json (TopoJSON, object `counties`) or any county GeoJSON
- Indicators: data/national_health_data_2024.csv, joined on zero-padded cnty_fips
- Map recolors when a new measure is picked; histograms, grouped bar and
  scatter are drawn straight from the indicator table
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import dash
from dash import dcc, html, Input, Output, State, no_update
import plotly.graph_objects as go

from charts import HISTOGRAMS, SCATTER_DEFAULTS, make_grouped_bar, make_histogram, make_scatter
from choropleth import ChoroplethMap, Tooltip
from health_data import DatasetLoadError, HealthDataset, build_dataset, load_sources
from measures import DEFAULT_MEASURE, MeasureRegistry, MeasureSelection, measure_registry


# ======================
# Config / Paths
# ======================

TOPOLOGY_PATH: Union[str, Path] = os.environ.get("HEALTH_MAP_TOPOLOGY") or Path("data/map.json")
HEALTH_CSV: Union[str, Path] = os.environ.get("HEALTH_MAP_CSV") or Path("data/national_health_data_2024.csv")
DEBUG = os.environ.get("HEALTH_MAP_DEBUG", "1") not in ("0", "false", "False")

MAP_CONFIG: Dict[str, Any] = {
    "containerWidth": 800,
    "containerHeight": 600,
    "margin": {"top": 20, "right": 20, "bottom": 20, "left": 20},
    "tooltipPadding": 10,
    "legendBottom": 50,
    "legendLeft": 50,
    "legendRectHeight": 12,
    "legendRectWidth": 150,
}

CARD_STYLE = {"background": "#fff", "borderRadius": "12px", "boxShadow": "0 2px 12px #0001", "padding": "14px 10px"}
LABEL_STYLE = {"fontWeight": 600, "marginRight": 8, "fontSize": "16px"}


# ======================
# Callback bodies
# ======================

def tooltip_children(tip: Tooltip) -> html.Div:
    measure, _, value = tip.body.partition(": ")
    return html.Div([
        html.Div(tip.title, className="tooltip-title", style={"fontWeight": 600, "marginBottom": 4}),
        html.Div([html.Strong(f"{measure}:"), f" {value}"]),
    ], style={"fontSize": "13px", "fontFamily": "Inter"})


def apply_measure(
    choropleth: ChoroplethMap,
    selection: MeasureSelection,
    measure: Optional[str],
) -> Tuple[go.Figure, str]:
    """Publish the dropdown change and return the redrawn map + missing note."""
    if measure is None:
        raise dash.exceptions.PreventUpdate
    selection.measure_changed(measure)
    return choropleth.figure, choropleth.missing_note


def hover_tooltip(
    choropleth: ChoroplethMap,
    hover_data: Optional[dict],
    measure: Optional[str] = None,
) -> Tuple[bool, Any, Any]:
    """
    (show, bbox, children) for the shared tooltip; hidden when the pointer leaves.

    `measure` is the dropdown value of the page being hovered, so the tooltip
    always describes the map that page is showing.
    """
    if not hover_data or not hover_data.get("points"):
        return False, no_update, no_update

    point = hover_data["points"][0]
    location = point.get("location")
    if location is None:
        return False, no_update, no_update

    tip = choropleth.tooltip_for(location, measure)
    bbox = choropleth.tooltip_position(point.get("bbox") or {})
    return True, bbox, tooltip_children(tip)


# ======================
# App Factory
# ======================

def build_layout(
    dataset: HealthDataset,
    choropleth: ChoroplethMap,
    registry: MeasureRegistry,
) -> html.Div:
    """Construct the static Dash layout."""
    options = registry.options()
    x_default, y_default = SCATTER_DEFAULTS

    histogram_cards = [
        html.Div(
            dcc.Graph(id=f"histogram-{i + 1}", figure=make_histogram(dataset.indicators, key, title),
                      style={"height": "340px"}),
            style={**CARD_STYLE, "flex": "1", "minWidth": "360px"},
        )
        for i, (key, title) in enumerate(HISTOGRAMS)
    ]

    return html.Div([
        html.H2("U.S. County Health Indicators", className="page-title", style={"marginBottom": "2px"}),
        html.P(
            "Pick a measure to recolor the map. Hover a county to see its value.",
            className="lead", style={"margin": "0 0 16px 0", "fontSize": "15px"},
        ),

        html.Div([
            html.Div([
                html.Label("Measure", htmlFor="measure-select", style=LABEL_STYLE),
                dcc.Dropdown(
                    id="measure-select",
                    options=options,
                    value=choropleth.measure,
                    clearable=False,
                    style={"width": 380, "fontSize": "15px"},
                ),
                html.Span(choropleth.missing_note, id="missing-note",
                          style={"marginLeft": 12, "color": "#555", "fontSize": "14px"}),
            ], style={"display": "flex", "alignItems": "center", "gap": "8px", "flexWrap": "wrap"}),
            dcc.Graph(
                id="map",
                figure=choropleth.figure,
                clear_on_unhover=True,
                config={"displayModeBar": False},
            ),
            dcc.Tooltip(id="map-tooltip", direction="right", show=False),
        ], style={**CARD_STYLE, "marginBottom": "18px"}),

        html.Div(histogram_cards, style={"display": "flex", "gap": "18px", "flexWrap": "wrap", "marginBottom": "18px"}),

        html.Div(
            dcc.Graph(id="grouped-bar", figure=make_grouped_bar(dataset.indicators), style={"height": "420px"}),
            style={**CARD_STYLE, "marginBottom": "18px"},
        ),

        html.Div([
            html.Div([
                html.Label("X", style=LABEL_STYLE),
                dcc.Dropdown(id="x-select", options=options, value=x_default, clearable=False,
                             style={"width": 320, "fontSize": "15px"}),
                html.Label("Y", style={**LABEL_STYLE, "marginLeft": 20}),
                dcc.Dropdown(id="y-select", options=options, value=y_default, clearable=False,
                             style={"width": 320, "fontSize": "15px"}),
            ], style={"display": "flex", "alignItems": "center", "gap": "8px", "flexWrap": "wrap"}),
            dcc.Graph(id="scatter", figure=make_scatter(dataset.indicators, x_default, y_default),
                      style={"height": "420px"}),
        ], style=CARD_STYLE),
    ], style={"background": "#f9fafb", "padding": "24px 18px", "fontFamily": "Inter, system-ui, sans-serif"})


def register_callbacks(
    app: dash.Dash,
    dataset: HealthDataset,
    choropleth: ChoroplethMap,
    selection: MeasureSelection,
):
    """Wire all Dash callbacks."""

    @app.callback(
        Output("map", "figure"),
        Output("missing-note", "children"),
        Input("measure-select", "value"),
        prevent_initial_call=True,
    )
    def update_map(measure):
        return apply_measure(choropleth, selection, measure)

    @app.callback(
        Output("map-tooltip", "show"),
        Output("map-tooltip", "bbox"),
        Output("map-tooltip", "children"),
        Input("map", "hoverData"),
        State("measure-select", "value"),
    )
    def update_tooltip(hover_data, measure):
        return hover_tooltip(choropleth, hover_data, measure)

    @app.callback(
        Output("scatter", "figure"),
        Input("x-select", "value"),
        Input("y-select", "value"),
        prevent_initial_call=True,
    )
    def update_scatter(x_key, y_key):
        if not x_key or not y_key:
            raise dash.exceptions.PreventUpdate
        return make_scatter(dataset.indicators, x_key, y_key)


def create_app(topology_path: Union[str, Path] = TOPOLOGY_PATH,
               csv_path: Union[str, Path] = HEALTH_CSV,
               map_config: Optional[Dict[str, Any]] = None) -> dash.Dash:
    """
    App factory. Loads both sources, joins them, builds the map and charts,
    and registers callbacks.

    Raises:
        DatasetLoadError: if either source cannot be loaded; nothing is rendered.
    """
    geometry, table = load_sources(topology_path, csv_path)
    registry = measure_registry()
    dataset = build_dataset(geometry, table, registry)

    choropleth = ChoroplethMap(map_config or MAP_CONFIG, dataset, DEFAULT_MEASURE, registry)
    selection = MeasureSelection(DEFAULT_MEASURE)
    choropleth.attach(selection)

    app = dash.Dash(__name__)
    app.title = "U.S. County Health Dashboard"

    app.layout = build_layout(dataset, choropleth, registry)
    register_callbacks(app, dataset, choropleth, selection)
    return app


# ======================
# Main
# ======================

if __name__ == "__main__":
    try:
        app = create_app()
    except DatasetLoadError:
        sys.exit(1)
    app.run(debug=DEBUG)
