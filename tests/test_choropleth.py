import numpy as np
import pytest
from loguru import logger
from plotly.colors import find_intermediate_color, hex_to_rgb

from choropleth import (
    HIGH_COLOR,
    LOW_COLOR,
    MISSING_FILL,
    ChoroplethConfig,
    ChoroplethMap,
    ChoroplethState,
    SequentialColorScale,
    county_title,
    format_legend_value,
    format_value,
    hcl_to_hex,
    hex_to_hcl,
    interpolate_hcl,
)
from health_data import build_dataset
from measures import MeasureSelection


@pytest.fixture
def choropleth(dataset):
    return ChoroplethMap(None, dataset, "poverty")


# ---- config ----

def test_config_defaults():
    cfg = ChoroplethConfig()
    assert (cfg.container_width, cfg.container_height) == (800, 600)
    assert cfg.margin == {"top": 20, "right": 20, "bottom": 20, "left": 20}
    assert cfg.tooltip_padding == 10
    assert (cfg.legend_bottom, cfg.legend_left) == (50, 50)
    assert (cfg.legend_rect_height, cfg.legend_rect_width) == (12, 150)
    assert (cfg.width, cfg.height) == (760, 560)


def test_config_from_partial_options():
    cfg = ChoroplethConfig.from_options({"containerWidth": 1000, "tooltipPadding": 0, "legend_left": 70})
    assert cfg.container_width == 1000
    assert cfg.tooltip_padding == 10
    assert cfg.legend_left == 70
    assert cfg.container_height == 600


# ---- color ----

@pytest.mark.parametrize("color", [LOW_COLOR, HIGH_COLOR, "#ff0000", "#336699"])
def test_hcl_round_trip(color):
    assert hcl_to_hex(*hex_to_hcl(color)) == color


def test_interpolation_endpoints_and_midpoint():
    assert interpolate_hcl(LOW_COLOR, HIGH_COLOR, 0) == LOW_COLOR
    assert interpolate_hcl(LOW_COLOR, HIGH_COLOR, 1) == HIGH_COLOR
    _, _, l_low = hex_to_hcl(LOW_COLOR)
    _, _, l_mid = hex_to_hcl(interpolate_hcl(LOW_COLOR, HIGH_COLOR, 0.5))
    _, _, l_high = hex_to_hcl(HIGH_COLOR)
    assert l_high < l_mid < l_low


def test_color_scale_maps_domain_to_range():
    scale = SequentialColorScale()
    scale.domain = (10.0, 20.0)
    assert scale(10.0) == LOW_COLOR
    assert scale(20.0) == HIGH_COLOR
    colorscale = scale.colorscale()
    assert colorscale[0] == [0.0, LOW_COLOR]
    assert colorscale[-1] == [1.0, HIGH_COLOR]


def test_degenerate_domain_uses_midpoint():
    scale = SequentialColorScale()
    scale.domain = (5.0, 5.0)
    assert scale(5.0) == scale.interpolate(0.5)


def test_value_formatting():
    assert format_value(18.5) == "18.5"
    assert format_value(25000.0) == "25000"
    assert format_legend_value(10.25) == "10.3"
    assert format_legend_value(-2.25) == "-2.2"
    assert format_legend_value(3.0) == "3"


# ---- domain + legend ----

def test_initial_domain_and_legend(choropleth):
    assert choropleth.state is ChoroplethState.IDLE
    assert choropleth.domain == (10.2, 18.5)
    stops = choropleth.legend_stops
    assert len(stops) == 2
    assert [s.offset for s in stops] == [0, 100]
    assert [s.value for s in stops] == [10.2, 18.5]
    assert [s.color for s in stops] == [LOW_COLOR, HIGH_COLOR]


def test_fills_use_scale_or_missing(choropleth):
    assert choropleth.fills() == [HIGH_COLOR, LOW_COLOR, MISSING_FILL, MISSING_FILL]
    assert choropleth.missing_note == "2/4 counties missing."


def test_domain_falls_back_when_no_values(choropleth):
    domain = choropleth.recompute_domain("park_access")
    assert domain == (0.0, 1.0)
    assert [(s.value, s.offset) for s in choropleth.legend_stops] == [(0.0, 0), (1.0, 100)]

    fig = choropleth.render()
    assert choropleth.fills() == [MISSING_FILL] * 4
    assert len(fig.data) == 1
    assert fig.data[0].colorscale[0][1] == MISSING_FILL
    assert len(fig.data[0].locations) == 4


def test_render_splits_colored_and_missing_traces(choropleth):
    fig = choropleth.figure
    colored, missing = fig.data
    assert list(colored.locations) == ["0", "1"]
    assert list(colored.z) == [18.5, 10.2]
    assert (colored.zmin, colored.zmax) == (10.2, 18.5)
    assert list(missing.locations) == ["2", "3"]
    assert colored.marker.line.color == missing.marker.line.color == "#fff"
    assert fig.layout.width == 800 and fig.layout.height == 600


def test_legend_labels_and_title(choropleth):
    texts = [a.text for a in choropleth.figure.layout.annotations]
    assert texts == ["poverty", "10.2", "18.5"]
    strip = choropleth.figure.layout.shapes
    assert strip[0].fillcolor != strip[-1].fillcolor
    assert strip[0].x0 == pytest.approx(50 / 760)
    assert strip[-1].x1 == pytest.approx(200 / 760)


def test_switching_measure_recolors_every_county(choropleth):
    before = choropleth.fills()
    choropleth.set_measure("air_quality")

    assert choropleth.state is ChoroplethState.IDLE
    assert choropleth.measure == "air_quality"
    assert choropleth.domain == (7.5, 8.1)
    after = choropleth.fills()
    assert after[:2] == [LOW_COLOR, HIGH_COLOR]
    assert all(a != b for a, b in zip(before[:2], after[:2]))
    assert [a.text for a in choropleth.figure.layout.annotations] == ["air_quality", "7.5", "8.1"]


def test_unknown_measure_renders_everything_missing(choropleth):
    messages = []
    handler_id = logger.add(messages.append, level="WARNING")
    try:
        choropleth.set_measure("not_a_measure")
    finally:
        logger.remove(handler_id)

    assert choropleth.state is ChoroplethState.IDLE
    assert choropleth.domain == (0.0, 1.0)
    assert choropleth.fills() == [MISSING_FILL] * 4
    assert any("Unknown measure: 'not_a_measure'" in m for m in messages)


def test_selection_drives_the_map(choropleth):
    selection = MeasureSelection("poverty")
    unsubscribe = choropleth.attach(selection)

    selection.measure_changed("percent_high_blood_pressure")
    assert choropleth.domain == (35.0, 40.1)

    unsubscribe()
    selection.measure_changed("air_quality")
    assert choropleth.measure == "percent_high_blood_pressure"


def test_requires_features(table):
    empty = build_dataset({"type": "FeatureCollection", "features": []}, table)
    with pytest.raises(ValueError):
        ChoroplethMap(None, empty, "poverty")


# ---- tooltip ----

def test_tooltip_uses_display_name_and_value(choropleth):
    tip = choropleth.tooltip_for("0")
    assert tip.title == "Autauga County"
    assert tip.body == "poverty: 18.5"


def test_tooltip_falls_back_to_identifier_then_unknown(choropleth):
    assert choropleth.tooltip_for("2").title == "02020"
    assert choropleth.tooltip_for("2").body == "poverty: N/A"
    assert choropleth.tooltip_for(3).title == "Unknown"


def test_tooltip_position_adds_padding(choropleth):
    pos = choropleth.tooltip_position({"x0": 100, "x1": 110, "y0": 40, "y1": 50})
    assert pos == {"x0": 110, "x1": 120, "y0": 50, "y1": 60}


def test_surface_does_not_touch_dataset(choropleth, dataset):
    ids = [f.get("id") for f in dataset.geojson["features"]]
    assert ids == ["01001", "99999", "02020", None]
    assert np.isnan(dataset.values_for("poverty")[2])


@pytest.mark.parametrize("name, fips, title", [
    ("Autauga County", "01001", "Autauga County"),
    (None, "02020", "02020"),
    (float("nan"), "02020", "02020"),
    ("", None, "Unknown"),
    (np.nan, np.nan, "Unknown"),
])
def test_county_title_skips_null_like_values(name, fips, title):
    assert county_title(name, fips) == title


def test_tooltip_titles_for_every_county(choropleth):
    titles = [choropleth.tooltip_for(i).title for i in range(4)]
    assert titles == ["Autauga County", "Baldwin County", "02020", "Unknown"]
    assert "nan" not in titles


def test_tooltip_for_an_explicit_measure_ignores_current_one(choropleth):
    choropleth.set_measure("air_quality")
    assert choropleth.tooltip_for("0", "poverty").body == "poverty: 18.5"
    assert choropleth.tooltip_for("0").body == "air_quality: 7.5"


def test_rendered_colorscale_tracks_the_hcl_fills(choropleth):
    scale = choropleth.color_scale
    stops = choropleth.figure.data[0].colorscale
    lo, hi = scale.domain
    for value in np.linspace(lo, hi, 41):
        t = scale.normalize(value)
        for (p0, c0), (p1, c1) in zip(stops, stops[1:]):
            if p0 <= t <= p1:
                break
        local = 0.0 if p1 == p0 else (t - p0) / (p1 - p0)
        drawn = find_intermediate_color(hex_to_rgb(c0), hex_to_rgb(c1), local, colortype="tuple")
        exact = hex_to_rgb(scale(value))
        assert max(abs(a - b) for a, b in zip(drawn, exact)) <= 2
