from __future__ import annotations

from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from checkins.transfer import export_filename
from render.renderer import InMemoryRenderer, to_geojson
from settings.types import LayerConfig
from viewer.engine import ViewerEngine
from viewer.singleton import get_engine
from viewer.viewport import Viewport

app = FastAPI(title="Checkin Map Viewer")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

FeatureId = str | int | float | None


class ApiVisibility(BaseModel):
    visible: bool


class ApiFilters(BaseModel):
    values: list[str] = Field(default_factory=list)


class ApiFeatureRef(BaseModel):
    layerId: str
    featureId: FeatureId = None
    properties: dict[str, Any] = Field(default_factory=dict)


def _summary(engine: ViewerEngine, layer_id: str) -> dict[str, Any]:
    for row in engine.layer_summaries():
        if row["id"] == layer_id:
            return row
    raise HTTPException(status_code=404, detail=f"Unknown layer: {layer_id}")


@app.get("/config")
async def get_viewer_config(engine: ViewerEngine = Depends(get_engine)):
    return {"title": engine.config.title, "map": engine.config.map.model_dump()}


@app.get("/layers")
async def list_layers(engine: ViewerEngine = Depends(get_engine)):
    return engine.layer_summaries()


@app.post("/layers")
async def add_layer(body: LayerConfig, engine: ViewerEngine = Depends(get_engine)):
    if not await engine.add_layer(body):
        raise HTTPException(status_code=409, detail=f"Layer already exists: {body.id}")
    return _summary(engine, body.id)


@app.delete("/layers/{layer_id}")
async def remove_layer(layer_id: str, engine: ViewerEngine = Depends(get_engine)):
    return {"removed": engine.remove_layer(layer_id)}


@app.post("/layers/{layer_id}/visibility")
async def set_visibility(
    layer_id: str, body: ApiVisibility, engine: ViewerEngine = Depends(get_engine)
):
    # Unknown ids are a no-op in the engine; report the current list either way.
    await engine.set_layer_visible(layer_id, body.visible)
    return engine.layer_summaries()


@app.post("/layers/{layer_id}/filters")
async def set_filters(
    layer_id: str, body: ApiFilters, engine: ViewerEngine = Depends(get_engine)
):
    engine.set_layer_filters(layer_id, body.values)
    return engine.layer_summaries()


@app.get("/layers/{layer_id}/style")
async def get_style(layer_id: str, engine: ViewerEngine = Depends(get_engine)):
    projection = engine.projection(layer_id)
    if projection is None:
        raise HTTPException(status_code=404, detail=f"Layer not loaded: {layer_id}")
    return projection.to_dict()


@app.get("/layers/{layer_id}/data")
async def get_layer_data(layer_id: str, engine: ViewerEngine = Depends(get_engine)):
    renderer = engine.renderer
    rendered = renderer.layers.get(layer_id) if isinstance(renderer, InMemoryRenderer) else None
    if rendered is None:
        raise HTTPException(status_code=404, detail=f"Layer not loaded: {layer_id}")
    return {"source": to_geojson(rendered.dataset), "layer": rendered.layer_spec()}


@app.post("/checkins/toggle")
async def toggle_checkin(body: ApiFeatureRef, engine: ViewerEngine = Depends(get_engine)):
    result = engine.toggle_checkin(body.layerId, body.featureId)
    if result is None:
        raise HTTPException(
            status_code=400, detail="This feature cannot be checked in: it has no usable id"
        )
    return {"result": result, "checkedIn": result == "added"}


@app.post("/popup")
async def popup(body: ApiFeatureRef, engine: ViewerEngine = Depends(get_engine)):
    return engine.popup(body.layerId, body.featureId, body.properties)


@app.get("/checkins/export")
async def export_checkins(engine: ViewerEngine = Depends(get_engine)):
    return JSONResponse(
        engine.export_checkins(),
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@app.post("/checkins/import")
async def import_checkins(
    payload: Any = Body(...),
    confirm: bool = False,
    engine: ViewerEngine = Depends(get_engine),
):
    """
    Without `confirm=true` this only reports what would be replaced.
    """
    plan = engine.plan_import(payload)
    if plan is None:
        raise HTTPException(status_code=400, detail="Invalid checkin file")
    applied = engine.import_checkins(plan, confirmed=confirm)
    return {
        "replacedPoints": plan.replaced_points,
        "addedPoints": plan.added_points,
        "applied": applied,
    }


@app.delete("/checkins")
async def clear_checkins(confirm: bool = False, engine: ViewerEngine = Depends(get_engine)):
    return {"cleared": engine.clear_checkins(confirmed=confirm)}


@app.get("/viewport")
async def get_viewport(engine: ViewerEngine = Depends(get_engine)):
    return engine.viewport().model_dump()


@app.put("/viewport")
async def put_viewport(body: Viewport, engine: ViewerEngine = Depends(get_engine)):
    return engine.save_viewport(body).model_dump()


@app.get("/messages")
async def drain_messages(engine: ViewerEngine = Depends(get_engine)):
    return [
        {"level": m.level, "text": m.text, "tsMs": m.ts_ms} for m in engine.notifier.drain()
    ]
