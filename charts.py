"""
Chart-data pipeline: reshape decoded spreadsheet rows into chart inputs.

2D charts come out as Chart.js configs and 3D charts as Plotly traces plus a
scene layout. Every builder is a pure function of (rows, settings); nothing
here is persisted, only the ``ChartSettings`` recipe is.

Numeric policy: any value that does not parse as a whole decimal number
(missing cells, text, NaN, infinities) counts as 0. Parsing is strict, not a
prefix scan: "12kg" is 0, not 12. Only the scatter3d z axis strips
non-numeric characters first, so "12 kg" there reads as 12. Python literal
underscores are not digit separators in cell text: "1_000" is 0.
"""
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from schemas import ChartType

Row = Dict[str, Any]

AGGREGATIONS = ("sum", "avg", "count")

PALETTE = [
    (255, 99, 132), (54, 162, 235), (255, 206, 86),
    (75, 192, 192), (153, 102, 255), (255, 159, 64),
    (199, 199, 199), (83, 102, 255), (255, 140, 184),
    (100, 255, 218),
]

BAR_WIDTH = 0.8
BAR_DEPTH = 0.8

# two triangles per side of a closed box over vertices 0-3 (front) and 4-7 (back)
BOX_FACES = {
    "i": [0, 0, 0, 1, 1, 2, 2, 3, 4, 4, 5, 6],
    "j": [1, 3, 4, 2, 5, 3, 6, 0, 5, 7, 6, 7],
    "k": [2, 1, 5, 3, 6, 2, 7, 4, 6, 6, 7, 3],
}

_NON_NUMERIC = re.compile(r"[^0-9eE.+\-]")


def to_number(value: Any, strip_non_numeric: bool = False) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if "_" in text:
            return 0.0
        if strip_non_numeric:
            text = _NON_NUMERIC.sub("", text)
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def rgba(index: int, alpha: float = 1) -> str:
    r, g, b = PALETTE[index % len(PALETTE)]
    return f"rgba({r}, {g}, {b}, {alpha})"


def distinct(values: Sequence[Any]) -> List[Any]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


@dataclass
class ChartSettings:
    x: Optional[str] = None
    y: Optional[str] = None
    z: Optional[str] = None
    group_by: Optional[str] = None
    aggregation: str = "sum"
    title: str = "My Chart"
    color_theme: str = "default"

    @classmethod
    def from_saved(cls, selected_fields: Sequence[Optional[str]], chart_options: Optional[Dict[str, Any]] = None) -> "ChartSettings":
        """Rebuild settings from a stored analysis.

        Named ``chartOptions`` entries win; the positional ``[x, y, z, groupBy]``
        slots of ``selectedFields`` fill whatever is missing.
        """
        options = chart_options or {}
        slots = list(selected_fields or []) + [None] * 4

        def pick(key, slot):
            return options.get(key) or slots[slot] or None

        return cls(
            x=pick("xAxis", 0),
            y=pick("yAxis", 1),
            z=pick("zAxis", 2),
            group_by=pick("groupBy", 3),
            aggregation=options.get("aggregation") or "sum",
            title=options.get("title") or "My Chart",
            color_theme=options.get("colorTheme") or "default",
        )

    def selected_fields(self) -> List[Optional[str]]:
        return [self.x, self.y, self.z, self.group_by]

    def chart_options(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "aggregation": self.aggregation,
            "groupBy": self.group_by,
            "xAxis": self.x,
            "yAxis": self.y,
            "zAxis": self.z,
            "colorTheme": self.color_theme,
        }


# ----------------------
# Grouping / aggregation
# ----------------------
def group_values(rows: Sequence[Row], group_col: str, value_col: str) -> Dict[Any, List[float]]:
    groups: Dict[Any, List[float]] = {}
    for row in rows:
        groups.setdefault(row.get(group_col), []).append(to_number(row.get(value_col)))
    return groups


def aggregate(values: Sequence[float], kind: str = "sum") -> float:
    if kind == "sum":
        return sum(values)
    if kind == "avg":
        return sum(values) / len(values) if values else 0.0
    if kind == "count":
        return len(values)
    raise ValueError(f"Unknown aggregation: {kind}")


def group_and_aggregate(rows: Sequence[Row], group_col: str, value_col: str, kind: str = "sum") -> List[Dict[str, Any]]:
    if kind not in AGGREGATIONS:
        raise ValueError(f"Unknown aggregation: {kind}")
    return [
        {"label": label, "value": aggregate(values, kind)}
        for label, values in group_values(rows, group_col, value_col).items()
    ]


def raw_pairs(rows: Sequence[Row], x: str, y: str) -> List[Dict[str, Any]]:
    return [{"label": row.get(x), "value": to_number(row.get(y))} for row in rows]


# ----------------------
# 2D (Chart.js)
# ----------------------
def series_2d(rows: Sequence[Row], settings: ChartSettings) -> List[Dict[str, Any]]:
    if settings.group_by and settings.y:
        return group_and_aggregate(rows, settings.group_by, settings.y, settings.aggregation)
    return raw_pairs(rows, settings.x, settings.y)


def build_2d(chart_type: ChartType, rows: Sequence[Row], settings: ChartSettings) -> Dict[str, Any]:
    points = series_2d(rows, settings) if settings.x else []
    count = len(points)
    return {
        "type": ChartType(chart_type).value,
        "data": {
            "labels": [p["label"] for p in points],
            "datasets": [{
                "label": f"{settings.y} vs {settings.x}",
                "data": [p["value"] for p in points],
                "backgroundColor": [rgba(i, 0.6) for i in range(count)],
                "borderColor": [rgba(i, 1) for i in range(count)],
                "borderWidth": 1,
            }],
        },
        "options": {
            "responsive": True,
            "maintainAspectRatio": False,
            "plugins": {
                "title": {"display": True, "text": settings.title},
                "legend": {"position": "top"},
            },
        },
    }


# ----------------------
# 3D (Plotly)
# ----------------------
def box_mesh(center: float, height: float) -> Dict[str, List[float]]:
    x0, x1 = center - BAR_WIDTH / 2, center + BAR_WIDTH / 2
    y0, y1 = 0, height
    z0, z1 = -BAR_DEPTH / 2, BAR_DEPTH / 2
    return {
        "x": [x0, x1, x1, x0, x0, x1, x1, x0],
        "y": [y0, y0, y1, y1, y0, y0, y1, y1],
        "z": [z0, z0, z0, z0, z1, z1, z1, z1],
    }


def _grouped_3d(settings: ChartSettings) -> bool:
    return bool(settings.group_by) and settings.group_by != settings.x


def build_bar3d(rows: Sequence[Row], settings: ChartSettings) -> List[Dict[str, Any]]:
    grouped = _grouped_3d(settings)
    if grouped:
        points = group_and_aggregate(rows, settings.group_by, settings.y, settings.aggregation)
    else:
        points = raw_pairs(rows, settings.x, settings.y)

    labels = distinct([p["label"] for p in points])
    traces = []
    shown = set()
    for point in points:
        label, height = point["label"], point["value"]
        position = labels.index(label)
        if grouped:
            hover = f"{settings.group_by}: {label}<br>{settings.y} ({settings.aggregation}): {height:.2f}"
        else:
            hover = f"{settings.x}: {label}<br>{settings.y}: {height}"
        trace = {"type": "mesh3d", **box_mesh(position, height), **BOX_FACES}
        trace.update({
            "opacity": 1,
            "color": rgba(position),
            "name": str(label),
            "hovertext": hover,
            "hoverinfo": "text",
            "showlegend": position not in shown,
        })
        shown.add(position)
        traces.append(trace)
    return traces


def build_scatter3d(rows: Sequence[Row], settings: ChartSettings) -> List[Dict[str, Any]]:
    ys = [to_number(row.get(settings.y)) for row in rows]
    if settings.z:
        zs = [to_number(row.get(settings.z), strip_non_numeric=True) for row in rows]
    else:
        zs = [0.0] * len(rows)
    return [{
        "type": "scatter3d",
        "mode": "markers",
        "x": [row.get(settings.x) for row in rows],
        "y": ys,
        "z": zs,
        "marker": {
            "size": 8,
            "color": ys,
            "colorscale": "Viridis",
            "opacity": 0.8,
            "colorbar": {"title": settings.y},
        },
        "text": [
            f"{settings.x}: {row.get(settings.x)}<br>{settings.y}: {row.get(settings.y)}<br>{settings.z}: {row.get(settings.z)}"
            for row in rows
        ],
        "name": "3D Scatter",
    }]


def build_surface3d(rows: Sequence[Row], settings: ChartSettings) -> List[Dict[str, Any]]:
    xs = distinct([row.get(settings.x) for row in rows])
    ys = distinct([to_number(row.get(settings.y)) for row in rows])

    def height(x_value, y_value):
        # exact-match lookup, no interpolation
        for row in rows:
            if row.get(settings.x) == x_value and to_number(row.get(settings.y)) == y_value:
                return to_number(row.get(settings.z))
        return 0.0

    return [{
        "type": "surface",
        "x": xs,
        "y": ys,
        "z": [[height(x_value, y_value) for x_value in xs] for y_value in ys],
        "colorscale": "Viridis",
        "name": "3D Surface",
    }]


def layout_3d(rows: Sequence[Row], settings: ChartSettings) -> Dict[str, Any]:
    categories = distinct([row.get(settings.x) for row in rows])
    y_title = f"{settings.y} ({settings.aggregation})" if _grouped_3d(settings) else settings.y
    return {
        "title": {"text": settings.title},
        "scene": {
            "xaxis": {
                "title": settings.x,
                "tickvals": list(range(len(categories))),
                "ticktext": [str(c) for c in categories],
            },
            "yaxis": {"title": y_title},
            "zaxis": {"title": settings.z},
        },
    }


BUILDERS_3D: Dict[ChartType, Callable[[Sequence[Row], ChartSettings], List[Dict[str, Any]]]] = {
    ChartType.bar3d: build_bar3d,
    ChartType.scatter3d: build_scatter3d,
    ChartType.surface3d: build_surface3d,
}


def build_chart(chart_type, rows: Sequence[Row], settings: ChartSettings) -> Dict[str, Any]:
    """Build the chart-library input for ``chart_type``.

    Raises ``ValueError`` for an unknown chart type.
    """
    chart_type = ChartType(chart_type)
    if not chart_type.is_3d:
        return build_2d(chart_type, rows, settings)
    traces = BUILDERS_3D[chart_type](rows, settings) if settings.x and settings.y else []
    return {
        "type": chart_type.value,
        "data": traces,
        "layout": layout_3d(rows, settings),
    }
