from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from layers.types import LayerState
from settings.types import CheckinStyle, LayerStyle, StrokeStyle

# Feature id as MapLibre sees it: top-level GeoJSON id, else an `id` property.
FEATURE_ID_EXPR: list[Any] = ["to-string", ["coalesce", ["id"], ["get", "id"]]]

# MapLibre paint property names per layer type: (color, width, opacity).
_STROKE_PROPS: dict[str, tuple[str, str | None, str | None]] = {
    "circle": ("circle-stroke-color", "circle-stroke-width", "circle-stroke-opacity"),
    "line": ("line-color", "line-width", "line-opacity"),
    # Fill layers have no outline width/opacity in MapLibre.
    "fill": ("fill-outline-color", None, None),
}


@dataclass(frozen=True)
class StyleProjection:
    filter: list[Any] | None
    paint: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"filter": self.filter, "paint": dict(self.paint)}


def filter_expression(
    active_values: Iterable[str], attribute_key: str | None
) -> list[Any] | None:
    """
    None means "no attribute filter": every feature is shown.
    """
    values = sorted({str(v) for v in active_values})
    if not values or not attribute_key:
        return None
    return ["in", ["to-string", ["get", attribute_key]], ["literal", values]]


def paint_overrides(
    annotation_ids: Iterable[str],
    *,
    style_type: str = "circle",
    checkin_style: CheckinStyle | None = None,
) -> dict[str, Any]:
    cs = checkin_style or CheckinStyle()
    props = _STROKE_PROPS.get(style_type)
    if props is None:
        return {}
    ids = sorted(set(annotation_ids))
    color_prop, width_prop, opacity_prop = props

    def _value(get: Callable[[StrokeStyle], Any]) -> Any:
        on, off = get(cs.checkedIn), get(cs.default)
        if not ids:
            return off
        return ["case", ["in", FEATURE_ID_EXPR, ["literal", ids]], on, off]

    out: dict[str, Any] = {color_prop: _value(lambda s: s.color)}
    if width_prop:
        out[width_prop] = _value(lambda s: s.width)
    if opacity_prop:
        out[opacity_prop] = _value(lambda s: s.opacity)
    return out


def project(
    layer_state: LayerState,
    annotation_ids: Iterable[str],
    attribute_key: str | None,
    *,
    style_type: str = "circle",
    checkin_style: CheckinStyle | None = None,
) -> StyleProjection:
    """
    Derive the renderer filter and stroke paint for one layer.

    Pure: the result depends only on the arguments.
    """
    return StyleProjection(
        filter=filter_expression(layer_state.active_filter_values, attribute_key),
        paint=paint_overrides(
            annotation_ids, style_type=style_type, checkin_style=checkin_style
        ),
    )


def stroke_for(
    feature_id: str | None, annotation_ids: Iterable[str], checkin_style: CheckinStyle | None = None
) -> StrokeStyle:
    """
    The stroke a single feature ends up with, as reported in its popup.
    """
    cs = checkin_style or CheckinStyle()
    if feature_id is not None and feature_id in set(annotation_ids):
        return cs.checkedIn
    return cs.default


def legend_color(style: LayerStyle) -> str:
    paint = style.paint or {}
    for key in ("circle-color", "line-color", "fill-color"):
        v = paint.get(key)
        if isinstance(v, str) and v:
            return v
    return "#000000"
