"""Shared county fixtures: a tiny quantized topology and an indicator table."""

import json

import pandas as pd
import pytest

from health_data import FIPS_COL, NAME_COL, build_dataset
from measures import measure_registry
from utils.convert_to_geojson import load_feature_collection


def make_topology():
    return {
        "type": "Topology",
        "transform": {"scale": [1, 1], "translate": [0, 0]},
        "arcs": [
            [[0, 0], [1, 0], [0, 1]],
            [[1, 1], [-1, 0], [0, -1]],
            [[1, 0], [1, 0], [0, 1], [-1, 0], [0, -1]],
        ],
        "objects": {
            "counties": {
                "type": "GeometryCollection",
                "geometries": [
                    {"type": "Polygon", "arcs": [[0, 1]], "id": "01001", "properties": {}},
                    {"type": "Polygon", "arcs": [[2]], "id": "99999", "properties": {"GEOID": "01003"}},
                    {"type": "Polygon", "arcs": [[2]], "id": "02020"},
                    {"type": "Polygon", "arcs": [[0, 1]], "properties": {}},
                ],
            }
        },
    }


ROWS = [
    {FIPS_COL: "1001", NAME_COL: "Autauga County", "poverty_perc": "18.5",
     "median_household_income": "", "air_quality": "7.5", "percent_high_blood_pressure": "40.1",
     "number_of_hospitals": "1"},
    {FIPS_COL: "1003", NAME_COL: "Baldwin County", "poverty_perc": "10.2",
     "median_household_income": "60000", "air_quality": "8.1", "percent_high_blood_pressure": "35.0"},
    {FIPS_COL: "", NAME_COL: "Nowhere", "poverty_perc": "12.0"},
    {FIPS_COL: "5005", NAME_COL: "Table Only County", "poverty_perc": "n/a", "air_quality": "6.0"},
]


def make_table(rows=ROWS):
    columns = [FIPS_COL, NAME_COL, *measure_registry().columns()]
    return pd.DataFrame([{c: r.get(c, "") for c in columns} for r in rows], columns=columns, dtype=str)


@pytest.fixture
def topology():
    return make_topology()


@pytest.fixture
def geometry():
    return load_feature_collection(json.dumps(make_topology()))


@pytest.fixture
def table():
    return make_table()


@pytest.fixture
def dataset(geometry, table):
    return build_dataset(geometry, table)


@pytest.fixture
def data_files(tmp_path):
    topo_path = tmp_path / "map.json"
    csv_path = tmp_path / "national_health_data_2024.csv"
    topo_path.write_text(json.dumps(make_topology()), encoding="utf-8")
    make_table().to_csv(csv_path, index=False)
    return topo_path, csv_path
