from __future__ import annotations

import asyncio
import json

from render.renderer import InMemoryRenderer
from settings.types import LayerConfig, MapCenter, ViewerConfig
from storage.kv import CHECKIN_KEY, VIEWPORT_KEY, InMemoryKeyValueStore
from viewer.engine import LOAD_ERROR_DESCRIPTION, ViewerEngine
from viewer.viewport import Viewport

from conftest import FakeFetcher, point_collection

CITY_HALL = point_collection(
    [
        (1, 139.69, 35.68, {"name": "A", "type": "ward"}),
        (2, 139.69, 35.68, {"name": "B", "type": "city"}),
        (None, 139.70, 35.69, {"name": "no id", "type": "ward"}),
    ],
    namespace="city-hall",
)
NO_NAMESPACE = point_collection([("x", 1.0, 1.0, {})])


def _config(*layers: LayerConfig) -> ViewerConfig:
    return ViewerConfig(layers=list(layers))


def _engine(kv=None, fetcher=None, *layers: LayerConfig) -> tuple[ViewerEngine, InMemoryRenderer]:
    renderer = InMemoryRenderer()
    engine = ViewerEngine(
        _config(
            *(
                layers
                or (
                    LayerConfig(
                        id="city-hall",
                        source="city-hall.geojson",
                        visible=True,
                        filterAttribute="type",
                    ),
                    LayerConfig(id="embassy", source="embassy.geojson", visible=False),
                )
            )
        ),
        kv=kv if kv is not None else InMemoryKeyValueStore(),
        fetcher=fetcher or FakeFetcher({"city-hall.geojson": CITY_HALL}),
        renderer=renderer,
    )
    return engine, renderer


def test_start_describes_layers_and_loads_visible_ones():
    engine, renderer = _engine()
    asyncio.run(engine.start())

    rows = {r["id"]: r for r in engine.layer_summaries()}
    assert rows["city-hall"]["status"] == "loaded"
    assert rows["city-hall"]["name"] == "city-hall layer"
    assert rows["city-hall"]["filterValues"] == ["city", "ward"]
    assert rows["embassy"]["status"] == "unloaded"
    # embassy source is missing, so its description falls back
    assert rows["embassy"]["description"] == LOAD_ERROR_DESCRIPTION
    assert rows["embassy"]["name"] == "Layer embassy"
    assert "city-hall" in renderer.layers
    assert renderer.layers["city-hall"].projection is not None


def test_toggle_checkin_updates_renderer_style():
    engine, renderer = _engine()
    asyncio.run(engine.start(describe_layers=False))

    assert engine.toggle_checkin("city-hall", 1) == "added"
    assert engine.is_checked_in("city-hall", "1")
    paint = renderer.layers["city-hall"].projection.paint
    assert paint["circle-stroke-color"][0] == "case"
    assert paint["circle-stroke-color"][1][2] == ["literal", ["1"]]

    assert engine.toggle_checkin("city-hall", "1") == "removed"
    paint = renderer.layers["city-hall"].projection.paint
    assert paint["circle-stroke-color"] == "#ffffff"


def test_toggle_checkin_without_feature_id_is_a_user_message():
    engine, _renderer = _engine()
    asyncio.run(engine.start(describe_layers=False))
    engine.notifier.drain()

    assert engine.toggle_checkin("city-hall", None) is None
    msgs = engine.notifier.drain()
    assert len(msgs) == 1 and msgs[0].level == "error"
    assert engine.checkins.export_all() == {}


def test_toggle_checkin_on_layer_without_namespace_is_rejected():
    engine, _renderer = _engine(
        None,
        FakeFetcher({"plain.geojson": NO_NAMESPACE}),
        LayerConfig(id="plain", source="plain.geojson", visible=True),
    )
    asyncio.run(engine.start(describe_layers=False))
    assert engine.toggle_checkin("plain", "x") is None
    assert engine.toggle_checkin("not-loaded", "x") is None


def test_filters_are_projected_into_renderer():
    engine, renderer = _engine()
    asyncio.run(engine.start(describe_layers=False))

    engine.set_layer_filters("city-hall", {"ward"})
    assert renderer.layers["city-hall"].projection.filter == [
        "in",
        ["to-string", ["get", "type"]],
        ["literal", ["ward"]],
    ]
    spec = renderer.layers["city-hall"].layer_spec()
    assert spec["filter"] == renderer.layers["city-hall"].projection.filter
    assert spec["layout"]["visibility"] == "visible"

    engine.set_layer_filters("city-hall", set())
    assert renderer.layers["city-hall"].projection.filter is None
    assert "filter" not in renderer.layers["city-hall"].layer_spec()


def test_popup_reports_properties_and_checkin_state():
    engine, _renderer = _engine()
    asyncio.run(engine.start(describe_layers=False))
    engine.toggle_checkin("city-hall", 2)

    out = engine.popup("city-hall", 2, {"name": "B"})
    assert out["properties"] == {"name": "B"}
    assert out["featureId"] == "2"
    assert out["checkedIn"] is True
    assert out["canCheckIn"] is True
    assert out["stroke"] == {"color": "#ffd700", "width": 4.0, "opacity": 1.0}

    out = engine.popup("city-hall", None, {"name": "no id"})
    assert out["canCheckIn"] is False
    assert out["checkedIn"] is False
    assert out["stroke"]["color"] == "#ffffff"


def test_import_flow_requires_confirmation():
    kv = InMemoryKeyValueStore()
    engine, renderer = _engine(kv)
    asyncio.run(engine.start(describe_layers=False))
    engine.toggle_checkin("city-hall", 1)

    plan = engine.plan_import({"shubyoData": {"city-hall": ["2"]}})
    assert plan is not None
    assert (plan.replaced_points, plan.added_points) == (1, 1)

    assert engine.import_checkins(plan, confirmed=False) is False
    assert engine.is_checked_in("city-hall", 1)

    assert engine.import_checkins(plan, confirmed=True) is True
    assert not engine.is_checked_in("city-hall", 1)
    assert engine.is_checked_in("city-hall", 2)
    assert json.loads(kv.get(CHECKIN_KEY)) == {"city-hall": ["2"]}
    paint = renderer.layers["city-hall"].projection.paint
    assert paint["circle-stroke-color"][1][2] == ["literal", ["2"]]


def test_invalid_import_is_reported():
    engine, _renderer = _engine()
    assert engine.plan_import({"nope": 1}) is None
    assert engine.notifier.drain()[-1].level == "error"


def test_clear_checkins_needs_confirmation():
    engine, _renderer = _engine()
    asyncio.run(engine.start(describe_layers=False))
    engine.toggle_checkin("city-hall", 1)

    assert engine.clear_checkins(confirmed=False) is False
    assert engine.checkins.total() == 1
    assert engine.clear_checkins(confirmed=True) is True
    assert engine.checkins.total() == 0


def test_export_contains_all_checkins():
    engine, _renderer = _engine()
    asyncio.run(engine.start(describe_layers=False))
    engine.toggle_checkin("city-hall", 1)
    engine.toggle_checkin("city-hall", 2)

    out = engine.export_checkins()
    assert out["shubyoData"] == {"city-hall": ["1", "2"]}
    assert out["totalPoints"] == 2


def test_checkins_survive_a_new_session():
    kv = InMemoryKeyValueStore()
    engine, _renderer = _engine(kv)
    asyncio.run(engine.start(describe_layers=False))
    engine.toggle_checkin("city-hall", 1)
    asyncio.run(engine.set_layer_visible("city-hall", False))

    again, renderer = _engine(kv)
    asyncio.run(again.start(describe_layers=False))
    assert again.is_checked_in("city-hall", 1) is False  # layer not loaded, no namespace yet
    assert again.checkins.contains("city-hall", "1")
    assert "city-hall" not in renderer.layers


def test_viewport_defaults_and_persists():
    kv = InMemoryKeyValueStore()
    engine, _renderer = _engine(kv)
    vp = engine.viewport()
    assert (vp.center.lon, vp.center.lat, vp.zoom) == (139.6917, 35.6895, 10.0)

    saved = engine.save_viewport(Viewport(center=MapCenter(lon=139.7, lat=35.7), zoom=23.0))
    # clamped to maxZoom
    assert saved.zoom == 18.0
    assert json.loads(kv.get(VIEWPORT_KEY))["zoom"] == 18.0

    again, _renderer = _engine(kv)
    assert again.viewport().center.lon == 139.7


def test_corrupt_viewport_falls_back_to_config():
    kv = InMemoryKeyValueStore(data={VIEWPORT_KEY: '{"center": "x"}'})
    engine, _renderer = _engine(kv)
    assert engine.viewport().zoom == 10.0


def test_add_and_remove_layer():
    fetcher = FakeFetcher({"city-hall.geojson": CITY_HALL})
    engine, renderer = _engine(None, fetcher)
    asyncio.run(engine.start(describe_layers=False))

    extra = LayerConfig(id="extra", source="city-hall.geojson", visible=True, name="Extra", description="d")
    assert asyncio.run(engine.add_layer(extra)) is True
    assert "extra" in renderer.layers
    assert asyncio.run(engine.add_layer(extra)) is False

    assert engine.remove_layer("extra") is True
    assert "extra" not in renderer.layers
    assert [r["id"] for r in engine.layer_summaries()] == ["city-hall", "embassy"]
