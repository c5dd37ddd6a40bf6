from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

from loguru import logger

from errors import FetchFailure, InvalidFormat, PersistenceFailure
from layers.decluster import DECLUSTER_RADIUS_DEG, decluster
from layers.fetch import DatasetFetcher
from layers.loaders import parse_feature_collection
from layers.types import Dataset, LayerState
from render.renderer import MapRenderer
from settings.types import LayerConfig
from storage.kv import LAYER_STATE_KEY, KeyValueStore, read_json_object, write_json_object

LayerCallback = Callable[[str], None]


def _noop(_: str) -> None:
    return None


class LayerStateMachine:
    """
    Owns one LayerState per configured dataset: Unloaded -> Loading -> Loaded{visible|hidden}.

    - Persisted {visible, filters} (read once, at construction) override config defaults
      when a layer is configured, before any load decision.
    - Every transition rewrites the whole persisted map for all configured layers.
    - Unknown layer ids are no-ops, so stale persisted ids never break anything.
    - A layer is fetched at most once; concurrent show requests share the outstanding load.
    """

    def __init__(
        self,
        *,
        kv: KeyValueStore,
        fetcher: DatasetFetcher,
        renderer: MapRenderer,
        resolve_source: Callable[[str], str] = lambda s: s,
        on_error: LayerCallback = _noop,
        on_change: LayerCallback = _noop,
        decluster_radius: float = DECLUSTER_RADIUS_DEG,
    ) -> None:
        self.kv = kv
        self.fetcher = fetcher
        self.renderer = renderer
        self.resolve_source = resolve_source
        # on_error receives a user-facing message; on_change a layer id whose style is stale.
        self.on_error = on_error
        self.on_change = on_change
        self.decluster_radius = float(decluster_radius)

        self._persisted: dict[str, Any] = read_json_object(kv, LAYER_STATE_KEY)
        self._configs: dict[str, LayerConfig] = {}
        self._states: dict[str, LayerState] = {}
        self._datasets: dict[str, Dataset] = {}
        self._loads: dict[str, asyncio.Task[None]] = {}

    # ---- configuration -------------------------------------------------

    def configure(self, config: LayerConfig, initial_visible: bool | None = None) -> LayerState:
        """
        Register a layer; a no-op (returning the existing state) if it is already configured.
        """
        existing = self._states.get(config.id)
        if existing is not None:
            return existing

        default_visible = config.visible if initial_visible is None else bool(initial_visible)
        state = LayerState(visible=default_visible)
        _reconcile(state, self._persisted.get(config.id))

        self._configs[config.id] = config
        self._states[config.id] = state
        self._persist()
        return state

    def remove_layer(self, layer_id: str) -> bool:
        if layer_id not in self._states:
            return False
        was_loaded = self._states[layer_id].loaded
        del self._states[layer_id]
        self._configs.pop(layer_id, None)
        self._datasets.pop(layer_id, None)
        self._persisted.pop(layer_id, None)
        # An outstanding load notices the removal when it resolves.
        self._loads.pop(layer_id, None)
        if was_loaded:
            self.renderer.remove_layer(layer_id)
        self._persist()
        logger.info(f"Layer {layer_id} removed")
        return True

    # ---- transitions ---------------------------------------------------

    async def set_visible(self, layer_id: str, visible: bool) -> None:
        state = self._states.get(layer_id)
        if state is None:
            return

        state.visible = bool(visible)
        self._persist()

        if state.loaded:
            self.renderer.set_visibility(layer_id, state.visible)
            if state.visible:
                self.on_change(layer_id)
            return

        if state.visible:
            await self.ensure_loaded(layer_id)
        # Hidden and not loaded: nothing to draw. An outstanding load picks up the flag.

    async def ensure_loaded(self, layer_id: str) -> None:
        state = self._states.get(layer_id)
        if state is None or state.loaded:
            return
        task = self._loads.get(layer_id)
        if task is None:
            state.loading = True
            state.failed = False
            task = asyncio.ensure_future(
                self._load(layer_id, state, self._configs[layer_id])
            )
            self._loads[layer_id] = task
        await asyncio.shield(task)

    def set_filter_values(self, layer_id: str, values: Iterable[Any]) -> None:
        state = self._states.get(layer_id)
        if state is None:
            return
        wanted = {str(v) for v in values or ()}
        if state.loaded:
            wanted &= self.observed_values(layer_id)
        state.active_filter_values = wanted
        self._persist()
        self.on_change(layer_id)

    async def load_initial_layers(self) -> None:
        """
        Load every layer whose reconciled state is visible, in configuration order.
        """
        for layer_id in list(self._configs):
            state = self._states.get(layer_id)
            if state is not None and state.visible and not state.loaded:
                await self.set_visible(layer_id, True)

    # ---- queries -------------------------------------------------------

    def layer_ids(self) -> list[str]:
        return list(self._configs)

    def config(self, layer_id: str) -> LayerConfig | None:
        return self._configs.get(layer_id)

    def state(self, layer_id: str) -> LayerState | None:
        return self._states.get(layer_id)

    def dataset(self, layer_id: str) -> Dataset | None:
        return self._datasets.get(layer_id)

    def loaded_layer_ids(self) -> list[str]:
        return [lid for lid, s in self._states.items() if s.loaded]

    def observed_values(self, layer_id: str, attribute: str | None = None) -> set[str]:
        dataset = self._datasets.get(layer_id)
        cfg = self._configs.get(layer_id)
        key = attribute or (cfg.filterAttribute if cfg is not None else None)
        if dataset is None or not key:
            return set()
        return dataset.attribute_values(key)

    def persisted_snapshot(self) -> dict[str, dict[str, Any]]:
        return {lid: s.to_persisted() for lid, s in self._states.items()}

    # ---- internals -----------------------------------------------------

    async def _load(self, layer_id: str, state: LayerState, cfg: LayerConfig) -> None:
        try:
            raw = await self.fetcher.fetch(self.resolve_source(cfg.source))
            dataset = parse_feature_collection(raw, dataset_id=layer_id, kind=cfg.kind)
        except (FetchFailure, InvalidFormat) as e:
            state.loading = False
            state.failed = True
            state.visible = False
            logger.warning(f"Error loading layer {layer_id}: {e}")
            self.on_error(f'Failed to load layer "{cfg.display_name()}": {e}')
            if self._states.get(layer_id) is state:
                self._persist()
            return
        finally:
            if self._loads.get(layer_id) is asyncio.current_task():
                self._loads.pop(layer_id, None)

        if self._states.get(layer_id) is not state:
            # Removed while the fetch was outstanding.
            return

        decluster(dataset, radius=self.decluster_radius)
        self._datasets[layer_id] = dataset
        state.loading = False
        state.loaded = True
        if state.active_filter_values:
            state.active_filter_values &= self.observed_values(layer_id)

        self.renderer.add_layer(cfg, dataset)
        self.renderer.set_visibility(layer_id, state.visible)
        logger.info(f"Layer {layer_id} loaded successfully ({len(dataset.features)} features)")
        self._persist()
        self.on_change(layer_id)

    def _persist(self) -> None:
        try:
            write_json_object(self.kv, LAYER_STATE_KEY, self.persisted_snapshot())
        except PersistenceFailure as e:
            self.on_error(str(e))


def _reconcile(state: LayerState, persisted: Any) -> None:
    if not isinstance(persisted, dict):
        return
    visible = persisted.get("visible")
    if isinstance(visible, bool):
        state.visible = visible
    filters = persisted.get("filters")
    if isinstance(filters, list):
        state.active_filter_values = {str(v) for v in filters if v is not None}
