"""
Measure-driven county choropleth.

The map owns a sequential HCL color scale and a two-stop gradient legend.
Selecting a measure recomputes the color domain from that measure's finite
values and redraws every county; counties without a value use a fixed gray.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import plotly.graph_objects as go
from loguru import logger
from plotly.colors import hex_to_rgb

from health_data import HealthDataset
from measures import DEFAULT_MEASURE, MeasureRegistry, MeasureSelection, UnknownMeasureError, measure_registry


LOW_COLOR = "#cfe2f2"
HIGH_COLOR = "#0d306b"
MISSING_FILL = "#ccc"
STROKE_COLOR = "#fff"
FALLBACK_DOMAIN = (0.0, 1.0)
LEGEND_STEPS = 32
COLORSCALE_SAMPLES = 65


# ======================
# Config
# ======================

@dataclass
class ChoroplethConfig:
    container_width: int = 800
    container_height: int = 600
    margin: Dict[str, int] = field(
        default_factory=lambda: {"top": 20, "right": 20, "bottom": 20, "left": 20}
    )
    tooltip_padding: int = 10
    legend_bottom: int = 50
    legend_left: int = 50
    legend_rect_height: int = 12
    legend_rect_width: int = 150

    # Option names as they appear in page-level config objects
    ALIASES = {
        "containerWidth": "container_width",
        "containerHeight": "container_height",
        "tooltipPadding": "tooltip_padding",
        "legendBottom": "legend_bottom",
        "legendLeft": "legend_left",
        "legendRectHeight": "legend_rect_height",
        "legendRectWidth": "legend_rect_width",
    }

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "ChoroplethConfig":
        """Build a config from a partial mapping; falsy or absent options keep their default."""
        names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (options or {}).items():
            name = cls.ALIASES.get(key, key)
            if name in names and value:
                kwargs[name] = value
        return cls(**kwargs)

    @property
    def width(self) -> int:
        return self.container_width - self.margin["left"] - self.margin["right"]

    @property
    def height(self) -> int:
        return self.container_height - self.margin["top"] - self.margin["bottom"]


# ======================
# Color
# ======================

_XN, _YN, _ZN = 0.96422, 1.0, 0.82521
_T0, _T1 = 4 / 29, 6 / 29
_T2, _T3 = 3 * _T1 * _T1, _T1 ** 3


def _rgb_to_linear(c: float) -> float:
    c /= 255
    return c / 12.92 if c <= 0.04045 else ((c + 0.055) / 1.055) ** 2.4


def _linear_to_rgb(c: float) -> float:
    return 255 * (12.92 * c if c <= 0.0031308 else 1.055 * c ** (1 / 2.4) - 0.055)


def _xyz_to_lab(t: float) -> float:
    return t ** (1 / 3) if t > _T3 else t / _T2 + _T0


def _lab_to_xyz(t: float) -> float:
    return t ** 3 if t > _T1 else _T2 * (t - _T0)


def hex_to_hcl(color: str) -> Tuple[float, float, float]:
    """(hue in degrees, chroma, luminance) of a hex color, via CIELAB (D50)."""
    r, g, b = (_rgb_to_linear(c) for c in hex_to_rgb(color))
    y = _xyz_to_lab((0.2225045 * r + 0.7168786 * g + 0.0606169 * b) / _YN)
    x = _xyz_to_lab((0.4360747 * r + 0.3850649 * g + 0.1430804 * b) / _XN)
    z = _xyz_to_lab((0.0139322 * r + 0.0971045 * g + 0.7141733 * b) / _ZN)
    lum, a, bb = 116 * y - 16, 500 * (x - y), 200 * (y - z)
    hue = math.degrees(math.atan2(bb, a)) % 360
    return hue, math.hypot(a, bb), lum


def hcl_to_hex(hue: float, chroma: float, lum: float) -> str:
    rad = math.radians(hue)
    a, b = chroma * math.cos(rad), chroma * math.sin(rad)
    y = (lum + 16) / 116
    x = _XN * _lab_to_xyz(y + a / 500)
    z = _ZN * _lab_to_xyz(y - b / 200)
    y = _YN * _lab_to_xyz(y)
    rgb = (
        _linear_to_rgb(3.1338561 * x - 1.6168667 * y - 0.4906146 * z),
        _linear_to_rgb(-0.9787684 * x + 1.9161415 * y + 0.0334540 * z),
        _linear_to_rgb(0.0719453 * x - 0.2289914 * y + 1.4052427 * z),
    )
    return "#" + "".join(f"{int(round(min(255, max(0, c)))):02x}" for c in rgb)


def interpolate_hcl(start: str, end: str, t: float) -> str:
    """Color at fraction t between two hex colors, taking the shorter way round the hue circle."""
    h0, c0, l0 = hex_to_hcl(start)
    h1, c1, l1 = hex_to_hcl(end)
    dh = h1 - h0
    if dh > 180 or dh < -180:
        dh -= 360 * round(dh / 360)
    return hcl_to_hex(h0 + t * dh, c0 + t * (c1 - c0), l0 + t * (l1 - l0))


class SequentialColorScale:
    """Linear value -> color mapping between two reference colors, interpolated in HCL."""

    def __init__(self, low: str = LOW_COLOR, high: str = HIGH_COLOR):
        self.range = (low, high)
        self.domain: Tuple[float, float] = FALLBACK_DOMAIN

    def normalize(self, value: float) -> float:
        lo, hi = self.domain
        if hi == lo:
            return 0.5
        return (value - lo) / (hi - lo)

    def interpolate(self, t: float) -> str:
        return interpolate_hcl(self.range[0], self.range[1], t)

    def __call__(self, value: float) -> str:
        return self.interpolate(self.normalize(value))

    def colorscale(self, samples: int = COLORSCALE_SAMPLES) -> List[List[Union[float, str]]]:
        """Plotly colorscale sampled densely along the HCL ramp."""
        return [[i / (samples - 1), self.interpolate(i / (samples - 1))] for i in range(samples)]


# ======================
# Component
# ======================

class ChoroplethState(Enum):
    IDLE = "idle"
    RECOMPUTING = "recomputing"


@dataclass(frozen=True)
class LegendStop:
    color: str
    value: float
    offset: int


@dataclass(frozen=True)
class Tooltip:
    title: str
    body: str


def format_value(value: float) -> str:
    """Plain number text: 18.5 -> '18.5', 25000.0 -> '25000'."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def format_legend_value(value: float) -> str:
    """Round half up to one decimal place."""
    return format_value(math.floor(value * 10 + 0.5) / 10)


def county_title(name: object, fips: object) -> str:
    """Display name, then identifier, then 'Unknown'; null-like values (None, NaN, '') are skipped."""
    for candidate in (name, fips):
        if isinstance(candidate, str) and candidate:
            return candidate
    return "Unknown"


class ChoroplethMap:
    """
    County map colored by one measure at a time.

    Args:
        config: ChoroplethConfig, or a partial mapping of its options
        dataset: joined HealthDataset (must contain at least one feature)
        initial_measure: measure rendered on construction
        registry: measure registry used to flag unregistered selections
    """

    def __init__(
        self,
        config: Union[ChoroplethConfig, Mapping[str, Any], None],
        dataset: HealthDataset,
        initial_measure: str = DEFAULT_MEASURE,
        registry: Optional[MeasureRegistry] = None,
    ):
        if len(dataset) == 0:
            raise ValueError("Choropleth needs at least one county feature")

        self.config = config if isinstance(config, ChoroplethConfig) else ChoroplethConfig.from_options(config)
        self.dataset = dataset
        self.registry = registry or measure_registry()
        self.state = ChoroplethState.IDLE

        self.color_scale = SequentialColorScale()
        self.legend_stops: List[LegendStop] = []
        self.all_missing = True
        self.figure: Optional[go.Figure] = None

        # Draw by feature position so counties without an identifier still render
        self._locations = [str(i) for i in range(len(dataset))]
        self._surface = {
            "type": "FeatureCollection",
            "features": [
                {**feat, "id": loc}
                for loc, feat in zip(self._locations, dataset.geojson["features"])
            ],
        }

        self.measure = initial_measure
        self._values = np.full(len(dataset), np.nan)
        self.recompute_domain(initial_measure)
        self.render()

    # ---- domain ----

    def recompute_domain(self, measure: str) -> Tuple[float, float]:
        """Set the color domain and legend stops from the finite values of `measure`."""
        self.measure = measure
        self._values = self.dataset.values_for(measure)
        finite = self._values[np.isfinite(self._values)]

        if finite.size == 0:
            domain = FALLBACK_DOMAIN
            self.all_missing = True
        else:
            domain = (float(finite.min()), float(finite.max()))
            self.all_missing = False

        self.color_scale.domain = domain
        self.legend_stops = [
            LegendStop(self.color_scale.range[0], domain[0], 0),
            LegendStop(self.color_scale.range[1], domain[1], 100),
        ]
        logger.debug(f"Domain for {measure}: {domain} ({finite.size} finite values)")
        return domain

    @property
    def domain(self) -> Tuple[float, float]:
        return self.color_scale.domain

    def _has_value(self) -> np.ndarray:
        if self.all_missing:
            return np.zeros(len(self._values), dtype=bool)
        return np.isfinite(self._values)

    def fills(self) -> List[str]:
        """Fill color of every feature, in feature order."""
        return [
            self.color_scale(v) if ok else MISSING_FILL
            for v, ok in zip(self._values, self._has_value())
        ]

    @property
    def missing_note(self) -> str:
        n_missing = int((~self._has_value()).sum())
        return f"{n_missing}/{len(self._values)} counties missing."

    # ---- drawing ----

    def _legend_layout(self) -> Tuple[List[dict], List[dict]]:
        cfg = self.config
        w, h = cfg.width, cfg.height
        x0 = cfg.legend_left / w
        x1 = (cfg.legend_left + cfg.legend_rect_width) / w
        y_top = cfg.legend_bottom / h
        y_bot = (cfg.legend_bottom - cfg.legend_rect_height) / h
        low, high = self.legend_stops

        shapes = []
        step = (x1 - x0) / LEGEND_STEPS
        for i in range(LEGEND_STEPS):
            shapes.append(dict(
                type="rect", xref="paper", yref="paper",
                x0=x0 + i * step, x1=x0 + (i + 1) * step, y0=y_bot, y1=y_top,
                fillcolor=interpolate_hcl(low.color, high.color, (i + 0.5) / LEGEND_STEPS),
                line=dict(width=0), layer="above",
            ))

        annotations = [
            dict(
                text=self.measure, x=x0, y=(cfg.legend_bottom + 10) / h,
                xref="paper", yref="paper", xanchor="left", yanchor="middle",
                showarrow=False, font=dict(size=12),
            )
        ]
        for stop in self.legend_stops:
            annotations.append(dict(
                text=format_legend_value(stop.value),
                x=x0 + (x1 - x0) * stop.offset / 100, y=(cfg.legend_bottom - 20) / h,
                xref="paper", yref="paper", xanchor="center", yanchor="middle",
                showarrow=False, font=dict(size=11),
            ))
        return shapes, annotations

    def render(self) -> go.Figure:
        """Redraw every county and the legend for the current measure."""
        has_value = self._has_value()
        locations = np.array(self._locations)
        fig = go.Figure()

        if has_value.any():
            lo, hi = self.color_scale.domain
            fig.add_trace(go.Choropleth(
                geojson=self._surface,
                featureidkey="id",
                locations=locations[has_value].tolist(),
                z=self._values[has_value].tolist(),
                zmin=lo,
                zmax=hi,
                colorscale=self.color_scale.colorscale(),
                showscale=False,
                marker_line_color=STROKE_COLOR,
                marker_line_width=0.5,
                hoverinfo="none",
                name=self.measure,
            ))

        if (~has_value).any():
            n_missing = int((~has_value).sum())
            fig.add_trace(go.Choropleth(
                geojson=self._surface,
                featureidkey="id",
                locations=locations[~has_value].tolist(),
                z=[0] * n_missing,
                colorscale=[[0, MISSING_FILL], [1, MISSING_FILL]],
                showscale=False,
                marker_line_color=STROKE_COLOR,
                marker_line_width=0.5,
                hoverinfo="none",
                name="missing",
            ))

        shapes, annotations = self._legend_layout()
        m = self.config.margin
        fig.update_geos(fitbounds="geojson", visible=False, projection_type="albers usa")
        fig.update_layout(
            width=self.config.container_width,
            height=self.config.container_height,
            margin={"t": m["top"], "r": m["right"], "b": m["bottom"], "l": m["left"]},
            paper_bgcolor="rgba(0,0,0,0)",
            showlegend=False,
            shapes=shapes,
            annotations=annotations,
        )
        self.figure = fig
        return fig

    # ---- hover ----

    def tooltip_for(self, location: Union[str, int], measure: Optional[str] = None) -> Tooltip:
        """
        Tooltip content for a hovered county (location = feature position).

        Args:
            location: feature position, as rendered on the map
            measure: measure shown on the client's map; defaults to the last one set
        """
        idx = int(location)
        measure = measure or self.measure
        row = self.dataset.attributes.iloc[idx]
        value = self.dataset.values_for(measure)[idx]
        shown = format_value(value) if np.isfinite(value) else "N/A"
        return Tooltip(title=county_title(row["NAME"], row["GEOID"]), body=f"{measure}: {shown}")

    def tooltip_position(self, bbox: Mapping[str, float]) -> Dict[str, float]:
        """Hover box shifted by the configured tooltip padding."""
        pad = self.config.tooltip_padding
        return {k: v + pad for k, v in bbox.items() if k in ("x0", "x1", "y0", "y1")}

    # ---- measure changes ----

    def set_measure(self, new_measure: str) -> go.Figure:
        """Recompute the domain and redraw for a newly selected measure."""
        try:
            self.registry.validate(new_measure)
        except UnknownMeasureError as exc:
            logger.warning(f"{exc.args[0]}; every county renders as missing")

        self.state = ChoroplethState.RECOMPUTING
        try:
            self.recompute_domain(new_measure)
            return self.render()
        finally:
            self.state = ChoroplethState.IDLE

    def attach(self, selection: MeasureSelection) -> Callable[[], None]:
        """Follow a selection control; returns the unsubscribe callable."""
        return selection.subscribe(self.set_measure)
