from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from loguru import logger

from checkins.store import CheckinStore, ToggleResult, normalize_feature_id
from checkins.transfer import ImportPlan, apply_import, build_export, plan_import
from errors import FetchFailure, InvalidFormat, InvalidKey, PersistenceFailure
from layers.fetch import DatasetFetcher
from layers.loaders import parse_metadata
from layers.state import LayerStateMachine
from render.renderer import InMemoryRenderer, MapRenderer
from settings.types import LayerConfig, ViewerConfig
from storage.kv import KeyValueStore
from style.projector import StyleProjection, legend_color, project, stroke_for
from viewer.notify import Notifier
from viewer.viewport import Viewport, clamp_viewport, load_viewport, save_viewport

DEFAULT_DESCRIPTION = "GeoJSON data"
LOAD_ERROR_DESCRIPTION = "Load error"


@dataclass(frozen=True)
class LayerInfo:
    name: str
    description: str
    category: str | None = None
    updated: str | None = None


class ViewerEngine:
    """
    One per session: owns the layer state machine, the checkin store and the viewport,
    and keeps renderer styles in step with both.

    Every public operation catches viewer errors at its own boundary and reports them
    through the notifier; none of them raise ViewerError.
    """

    def __init__(
        self,
        config: ViewerConfig,
        *,
        kv: KeyValueStore,
        fetcher: DatasetFetcher,
        renderer: MapRenderer | None = None,
        notifier: Notifier | None = None,
        resolve_source: Callable[[str], str] = lambda s: s,
    ) -> None:
        self.config = config
        self.kv = kv
        self.fetcher = fetcher
        self.renderer = renderer if renderer is not None else InMemoryRenderer()
        self.notifier = notifier if notifier is not None else Notifier()
        self.resolve_source = resolve_source

        self.checkins = CheckinStore.load(kv)
        self.layers = LayerStateMachine(
            kv=kv,
            fetcher=fetcher,
            renderer=self.renderer,
            resolve_source=resolve_source,
            on_error=self.notifier.error,
            on_change=self.refresh_style,
            decluster_radius=config.declusterRadiusDeg,
        )
        self._viewport = load_viewport(kv, config.map)
        self._info: dict[str, LayerInfo] = {}
        for layer_cfg in config.layers:
            self.layers.configure(layer_cfg)

    async def start(self, *, describe_layers: bool = True) -> None:
        """
        Read layer names/descriptions, then load every layer that starts visible.
        """
        if describe_layers:
            for layer_id in self.layers.layer_ids():
                await self.describe_layer(layer_id)
        await self.layers.load_initial_layers()

    # ---- layers --------------------------------------------------------

    async def describe_layer(self, layer_id: str) -> LayerInfo | None:
        cfg = self.layers.config(layer_id)
        if cfg is None:
            return None
        if cfg.name and cfg.description:
            info = LayerInfo(name=cfg.name, description=cfg.description)
        else:
            try:
                raw = await self.fetcher.fetch(self.resolve_source(cfg.source))
                meta = parse_metadata(raw.get("metadata"))
                info = LayerInfo(
                    name=cfg.name or meta.name or cfg.display_name(),
                    description=cfg.description or meta.description or DEFAULT_DESCRIPTION,
                    category=meta.category,
                    updated=meta.updated,
                )
            except FetchFailure as e:
                logger.warning(f"Error loading metadata for layer {layer_id}: {e}")
                info = LayerInfo(
                    name=cfg.display_name(), description=cfg.description or LOAD_ERROR_DESCRIPTION
                )
        self._info[layer_id] = info
        return info

    def layer_info(self, layer_id: str) -> LayerInfo | None:
        cfg = self.layers.config(layer_id)
        if cfg is None:
            return None
        info = self._info.get(layer_id)
        if info is not None:
            return info
        dataset = self.layers.dataset(layer_id)
        meta = dataset.metadata if dataset is not None else None
        return LayerInfo(
            name=cfg.name or (meta.name if meta else None) or cfg.display_name(),
            description=cfg.description
            or (meta.description if meta else None)
            or DEFAULT_DESCRIPTION,
            category=meta.category if meta else None,
            updated=meta.updated if meta else None,
        )

    async def set_layer_visible(self, layer_id: str, visible: bool) -> None:
        await self.layers.set_visible(layer_id, visible)

    def set_layer_filters(self, layer_id: str, values: Iterable[Any]) -> None:
        self.layers.set_filter_values(layer_id, values)

    async def add_layer(self, config: LayerConfig) -> bool:
        if self.layers.config(config.id) is not None:
            self.notifier.error(f'Layer "{config.id}" already exists')
            return False
        state = self.layers.configure(config)
        await self.describe_layer(config.id)
        if state.visible:
            await self.layers.set_visible(config.id, True)
        return True

    def remove_layer(self, layer_id: str) -> bool:
        self._info.pop(layer_id, None)
        return self.layers.remove_layer(layer_id)

    def layer_summaries(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for layer_id in self.layers.layer_ids():
            cfg = self.layers.config(layer_id)
            state = self.layers.state(layer_id)
            info = self.layer_info(layer_id)
            if cfg is None or state is None or info is None:
                continue
            dataset = self.layers.dataset(layer_id)
            out.append(
                {
                    "id": layer_id,
                    "name": info.name,
                    "description": info.description,
                    "category": info.category,
                    "updated": info.updated,
                    "geometryType": cfg.geometryType,
                    "color": legend_color(cfg.style),
                    "visible": state.visible,
                    "status": state.status,
                    "failed": state.failed,
                    "filterAttribute": cfg.filterAttribute,
                    "filterValues": sorted(self.layers.observed_values(layer_id)),
                    "activeFilters": sorted(state.active_filter_values),
                    "featureCount": len(dataset.features) if dataset is not None else None,
                    "checkins": len(self.checkins.ids_for(dataset.namespace))
                    if dataset is not None
                    else 0,
                }
            )
        return out

    # ---- styles --------------------------------------------------------

    def projection(self, layer_id: str) -> StyleProjection | None:
        cfg = self.layers.config(layer_id)
        state = self.layers.state(layer_id)
        dataset = self.layers.dataset(layer_id)
        if cfg is None or state is None or dataset is None:
            return None
        return project(
            state,
            self.checkins.ids_for(dataset.namespace),
            cfg.filterAttribute,
            style_type=cfg.style.type,
            checkin_style=self.config.checkinStyle,
        )

    def refresh_style(self, layer_id: str) -> None:
        projection = self.projection(layer_id)
        if projection is not None:
            self.renderer.apply_style(layer_id, projection)

    def refresh_all_styles(self) -> None:
        for layer_id in self.layers.loaded_layer_ids():
            self.refresh_style(layer_id)

    # ---- checkins ------------------------------------------------------

    def namespace_for(self, layer_id: str) -> str | None:
        dataset = self.layers.dataset(layer_id)
        return dataset.namespace if dataset is not None else None

    def toggle_checkin(self, layer_id: str, feature_id: Any) -> ToggleResult | None:
        """
        Flip the checkin mark of one feature of a loaded layer.

        Returns None (after telling the user) when the layer has no namespace or the
        feature has no usable id.
        """
        namespace = self.namespace_for(layer_id)
        try:
            result = self.checkins.toggle(namespace, feature_id)
        except InvalidKey as e:
            logger.warning(f"Checkin rejected for layer {layer_id}: {e}")
            self.notifier.error("This feature cannot be checked in: it has no usable id")
            return None
        except PersistenceFailure as e:
            # In-memory state already changed; only the save failed.
            self.notifier.error(str(e))
            result = "added" if self.checkins.contains(namespace, feature_id) else "removed"
        self.refresh_all_styles()
        return result

    def is_checked_in(self, layer_id: str, feature_id: Any) -> bool:
        return self.checkins.contains(self.namespace_for(layer_id), feature_id)

    def popup(self, layer_id: str, feature_id: Any, properties: dict[str, Any]) -> dict[str, Any]:
        """
        Popup content for a clicked feature: its attributes plus its checkin state.
        """
        info = self.layer_info(layer_id)
        try:
            fid: str | None = normalize_feature_id(feature_id)
        except InvalidKey:
            fid = None
        namespace = self.namespace_for(layer_id)
        checked_in = self.checkins.contains(namespace, fid)
        stroke = stroke_for(fid, self.checkins.ids_for(namespace), self.config.checkinStyle)
        return {
            "title": info.name if info is not None else layer_id,
            "properties": dict(properties or {}),
            "featureId": fid,
            "canCheckIn": fid is not None and bool(namespace),
            "checkedIn": checked_in,
            "stroke": stroke.model_dump(),
        }

    def export_checkins(self) -> dict[str, Any]:
        return build_export(self.checkins)

    def plan_import(self, raw: str | bytes | dict[str, Any]) -> ImportPlan | None:
        try:
            return plan_import(self.checkins, raw)
        except InvalidFormat as e:
            logger.warning(f"Checkin import rejected: {e}")
            self.notifier.error(f"Invalid checkin file: {e}")
            return None

    def import_checkins(self, plan: ImportPlan, *, confirmed: bool) -> bool:
        try:
            applied = apply_import(self.checkins, plan, confirmed=confirmed)
        except InvalidFormat as e:
            self.notifier.error(f"Invalid checkin file: {e}")
            return False
        except PersistenceFailure as e:
            self.notifier.error(str(e))
            applied = True
        if applied:
            self.notifier.info(
                f"Imported {plan.added_points} checkins (replaced {plan.replaced_points})"
            )
            self.refresh_all_styles()
        return applied

    def clear_checkins(self, *, confirmed: bool) -> bool:
        if not confirmed:
            return False
        n = self.checkins.total()
        try:
            self.checkins.clear()
        except PersistenceFailure as e:
            self.notifier.error(str(e))
        logger.info(f"Cleared {n} checkins")
        self.refresh_all_styles()
        return True

    # ---- viewport ------------------------------------------------------

    def viewport(self) -> Viewport:
        return self._viewport

    def save_viewport(self, vp: Viewport) -> Viewport:
        self._viewport = clamp_viewport(vp, self.config.map)
        try:
            save_viewport(self.kv, self._viewport, self.config.map)
        except PersistenceFailure as e:
            self.notifier.error(str(e))
        return self._viewport
