"""
Tests for the chart-data pipeline: numeric coercion, grouping/aggregation,
Chart.js 2D configs, Plotly 3D geometry and chart-type dispatch.

Run with: pytest tests/test_charts.py -v
"""

from collections import Counter

import pytest

from charts import (
    BOX_FACES,
    ChartSettings,
    build_bar3d,
    build_chart,
    build_scatter3d,
    build_surface3d,
    group_and_aggregate,
    group_values,
    rgba,
    to_number,
)
from schemas import ChartType


@pytest.fixture
def grouped_rows():
    return [{"g": "A", "v": "10"}, {"g": "A", "v": "20"}, {"g": "B", "v": "5"}]


def _by_label(points):
    return {p["label"]: p["value"] for p in points}


# ============= Numeric Coercion =============


class TestToNumber:

    @pytest.mark.parametrize("value,expected", [
        ("12.5", 12.5),
        (" 3 ", 3.0),
        (7, 7.0),
        (2.25, 2.25),
        ("1e3", 1000.0),
        ("-4", -4.0),
    ])
    def test_parses_numbers(self, value, expected):
        assert to_number(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", "NaN", float("nan"), float("inf"), True, "12 kg", "12kg", "1_000"])
    def test_non_numeric_is_zero(self, value):
        assert to_number(value) == 0.0

    @pytest.mark.parametrize("value,expected", [
        ("$1,200.50", 1200.5),
        ("12 kg", 12.0),
        ("abc", 0.0),
        (None, 0.0),
    ])
    def test_strip_non_numeric(self, value, expected):
        assert to_number(value, strip_non_numeric=True) == expected


# ============= Grouping / Aggregation =============


class TestGrouping:

    def test_sum(self, grouped_rows):
        assert _by_label(group_and_aggregate(grouped_rows, "g", "v", "sum")) == {"A": 30, "B": 5}

    def test_avg(self, grouped_rows):
        assert _by_label(group_and_aggregate(grouped_rows, "g", "v", "avg")) == {"A": 15, "B": 5}

    def test_count(self, grouped_rows):
        assert _by_label(group_and_aggregate(grouped_rows, "g", "v", "count")) == {"A": 2, "B": 1}

    def test_default_is_sum(self, grouped_rows):
        assert _by_label(group_and_aggregate(grouped_rows, "g", "v")) == {"A": 30, "B": 5}

    def test_groups_partition_every_row(self):
        rows = [{"k": k, "v": v} for k, v in [("x", 1), ("y", "2"), ("x", None), ("z", "bad"), ("y", 3.5)]]
        groups = group_values(rows, "k", "v")
        members = Counter(v for values in groups.values() for v in values)
        assert members == Counter(to_number(r["v"]) for r in rows)
        counts = _by_label(group_and_aggregate(rows, "k", "v", "count"))
        assert counts == dict(Counter(r["k"] for r in rows))

    def test_single_row_group(self):
        rows = [{"k": "solo", "v": "42"}]
        assert group_and_aggregate(rows, "k", "v", "sum")[0]["value"] == 42
        assert group_and_aggregate(rows, "k", "v", "avg")[0]["value"] == 42

    def test_missing_values_count_as_zero(self):
        rows = [{"k": "a", "v": None}, {"k": "a"}, {"k": "a", "v": "n/a"}, {"k": "a", "v": 3}]
        assert group_and_aggregate(rows, "k", "v", "sum") == [{"label": "a", "value": 3.0}]
        assert group_and_aggregate(rows, "k", "v", "avg") == [{"label": "a", "value": 0.75}]

    def test_unknown_aggregation(self, grouped_rows):
        with pytest.raises(ValueError):
            group_and_aggregate(grouped_rows, "g", "v", "median")


# ============= Settings =============


class TestChartSettings:

    def test_from_saved_prefers_chart_options(self):
        settings = ChartSettings.from_saved(
            ["a", "b", "c", "d"],
            {"xAxis": "x", "yAxis": "y", "groupBy": "g", "aggregation": "avg", "title": "T"},
        )
        assert (settings.x, settings.y, settings.z, settings.group_by) == ("x", "y", "c", "g")
        assert settings.aggregation == "avg"
        assert settings.title == "T"

    def test_from_saved_positional_slots(self):
        settings = ChartSettings.from_saved(["col1", "col2"], None)
        assert (settings.x, settings.y, settings.z, settings.group_by) == ("col1", "col2", None, None)
        assert settings.aggregation == "sum"

    def test_wire_shape(self):
        settings = ChartSettings(x="x", y="y", z="z", group_by="g", aggregation="count", title="T")
        assert settings.selected_fields() == ["x", "y", "z", "g"]
        options = settings.chart_options()
        assert options == {
            "title": "T", "aggregation": "count", "groupBy": "g",
            "xAxis": "x", "yAxis": "y", "zAxis": "z", "colorTheme": "default",
        }
        assert ChartSettings.from_saved(settings.selected_fields(), options) == settings


# ============= 2D =============


class TestBuild2D:

    def test_grouped_series(self, grouped_rows):
        chart = build_chart("pie", grouped_rows, ChartSettings(x="g", y="v", group_by="g"))
        assert chart["type"] == "pie"
        data = chart["data"]
        assert dict(zip(data["labels"], data["datasets"][0]["data"])) == {"A": 30, "B": 5}
        assert data["datasets"][0]["label"] == "v vs g"

    def test_raw_series_keeps_row_order(self):
        rows = [{"x": "c", "y": "3"}, {"x": "a", "y": "oops"}, {"x": "b", "y": 2}]
        chart = build_chart("line", rows, ChartSettings(x="x", y="y"))
        assert chart["data"]["labels"] == ["c", "a", "b"]
        assert chart["data"]["datasets"][0]["data"] == [3.0, 0.0, 2.0]

    def test_palette_cycles(self):
        rows = [{"x": str(i), "y": i} for i in range(12)]
        dataset = build_chart("bar", rows, ChartSettings(x="x", y="y"))["data"]["datasets"][0]
        assert dataset["backgroundColor"][10] == dataset["backgroundColor"][0] == rgba(0, 0.6)
        assert dataset["borderColor"][1] == rgba(1, 1)

    def test_no_x_axis_gives_empty_chart(self, grouped_rows):
        chart = build_chart("bar", grouped_rows, ChartSettings(y="v"))
        assert chart["data"]["labels"] == []

    def test_title_in_options(self, grouped_rows):
        chart = build_chart("radar", grouped_rows, ChartSettings(x="g", y="v", title="Hello"))
        assert chart["options"]["plugins"]["title"]["text"] == "Hello"


# ============= 3D =============


class TestBar3D:

    def test_one_box_per_pair(self, grouped_rows):
        traces = build_bar3d(grouped_rows, ChartSettings(x="g", y="v"))
        assert len(traces) == 3
        for trace in traces:
            assert trace["type"] == "mesh3d"
            assert len(trace["x"]) == len(trace["y"]) == len(trace["z"]) == 8
            assert len(list(zip(trace["i"], trace["j"], trace["k"]))) == 12

    def test_grouped_boxes(self, grouped_rows):
        traces = build_bar3d(grouped_rows, ChartSettings(x="x", y="v", group_by="g", aggregation="sum"))
        assert [t["name"] for t in traces] == ["A", "B"]
        assert max(traces[0]["y"]) == 30
        assert "(sum)" in traces[0]["hovertext"]

    def test_box_geometry(self):
        traces = build_bar3d([{"x": "a", "y": 1}, {"x": "b", "y": 4}], ChartSettings(x="x", y="y"))
        box = traces[1]
        assert min(box["x"]) == pytest.approx(0.6)
        assert max(box["x"]) == pytest.approx(1.4)
        assert (min(box["y"]), max(box["y"])) == (0, 4)
        assert (min(box["z"]), max(box["z"])) == (-0.4, 0.4)
        assert {k: box[k] for k in "ijk"} == BOX_FACES

    def test_color_per_label(self):
        rows = [{"x": "a", "y": 1}, {"x": "b", "y": 2}, {"x": "a", "y": 3}]
        traces = build_bar3d(rows, ChartSettings(x="x", y="y"))
        assert traces[0]["color"] == traces[2]["color"] == rgba(0)
        assert traces[1]["color"] == rgba(1)
        assert [t["showlegend"] for t in traces] == [True, True, False]
        assert traces[2]["x"] == traces[0]["x"]

    def test_palette_wraps(self):
        rows = [{"x": f"c{i}", "y": 1} for i in range(11)]
        traces = build_bar3d(rows, ChartSettings(x="x", y="y"))
        assert traces[10]["color"] == traces[0]["color"]


class TestScatter3D:

    def test_points(self):
        rows = [{"x": "a", "y": "1", "z": "10 kg"}, {"x": "b", "y": "x", "z": "$2"}]
        trace = build_scatter3d(rows, ChartSettings(x="x", y="y", z="z"))[0]
        assert trace["x"] == ["a", "b"]
        assert trace["y"] == [1.0, 0.0]
        assert trace["z"] == [10.0, 2.0]
        assert trace["marker"]["color"] == trace["y"]
        assert trace["marker"]["colorscale"] == "Viridis"

    def test_without_z_axis(self):
        trace = build_scatter3d([{"x": 1, "y": 2}], ChartSettings(x="x", y="y"))[0]
        assert trace["z"] == [0.0]


class TestSurface3D:

    def test_exact_match_grid(self):
        rows = [
            {"x": "a", "y": 1, "z": 5},
            {"x": "b", "y": 2, "z": 7},
            {"x": "a", "y": 1, "z": 99},
        ]
        trace = build_surface3d(rows, ChartSettings(x="x", y="y", z="z"))[0]
        assert trace["x"] == ["a", "b"]
        assert trace["y"] == [1.0, 2.0]
        # first matching row wins; unmatched cells are 0
        assert trace["z"] == [[5.0, 0.0], [0.0, 7.0]]


class TestDispatch:

    @pytest.mark.parametrize("chart_type", [t.value for t in ChartType])
    def test_every_chart_type_builds(self, chart_type, grouped_rows):
        chart = build_chart(chart_type, grouped_rows, ChartSettings(x="g", y="v", z="v", group_by="g"))
        assert chart["type"] == chart_type
        if ChartType(chart_type).is_3d:
            assert chart["layout"]["scene"]["xaxis"]["title"] == "g"
            assert chart["data"]
        else:
            assert chart["data"]["labels"]

    def test_unknown_chart_type(self, grouped_rows):
        with pytest.raises(ValueError):
            build_chart("hologram", grouped_rows, ChartSettings(x="g", y="v"))

    def test_pure(self, grouped_rows):
        settings = ChartSettings(x="g", y="v", group_by="g")
        snapshot = [dict(r) for r in grouped_rows]
        assert build_chart("bar3d", grouped_rows, settings) == build_chart("bar3d", grouped_rows, settings)
        assert grouped_rows == snapshot
