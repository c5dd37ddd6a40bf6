from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal

from loguru import logger

from errors import InvalidFormat, InvalidKey
from storage.kv import CHECKIN_KEY, KeyValueStore, read_json_object, write_json_object

ToggleResult = Literal["added", "removed"]

# String forms that mean "no id" once a missing value has been stringified somewhere upstream.
_PLACEHOLDER_IDS = frozenset({"undefined", "null", "none", "nan"})


def normalize_feature_id(raw: Any) -> str:
    """
    Canonical string form of a feature / namespace id.

    Integral numbers and their string forms compare equal: 42, 42.0 and "42" -> "42".
    Raises InvalidKey for empty or placeholder ids.
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidKey(f"Missing id: {raw!r}")
    if isinstance(raw, float):
        if not math.isfinite(raw):
            raise InvalidKey(f"Invalid id: {raw!r}")
        s = str(int(raw)) if raw.is_integer() else repr(raw)
    elif isinstance(raw, int):
        s = str(raw)
    else:
        s = str(raw).strip()
        if _is_integral_float_text(s):
            s = s.split(".", 1)[0]
    if not s or s.lower() in _PLACEHOLDER_IDS:
        raise InvalidKey(f"Missing id: {raw!r}")
    return s


def _is_integral_float_text(s: str) -> bool:
    # "42.0" -> True; "42.5", "1e3", "abc" -> False
    head, sep, tail = s.partition(".")
    if not sep or not tail:
        return False
    digits = head[1:] if head.startswith("-") else head
    return digits.isdigit() and set(tail) == {"0"}


@dataclass
class CheckinStore:
    """
    Persistent `namespace -> {feature ids}` mapping ("shubyo" data).

    Every mutation rewrites the whole blob in the key-value store before returning.
    """

    kv: KeyValueStore
    _data: dict[str, set[str]] = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, kv: KeyValueStore) -> "CheckinStore":
        store = cls(kv=kv)
        raw = read_json_object(kv, CHECKIN_KEY)
        try:
            store._data = parse_checkin_mapping(raw)
        except InvalidFormat as e:
            logger.warning(f"Ignoring persisted checkins: {e}")
            store._data = {}
        return store

    def toggle(self, namespace: Any, feature_id: Any) -> ToggleResult:
        ns, fid = _keys(namespace, feature_id)
        ids = self._data.setdefault(ns, set())
        if fid in ids:
            ids.discard(fid)
            result: ToggleResult = "removed"
        else:
            ids.add(fid)
            result = "added"
        self._persist()
        return result

    def add(self, namespace: Any, feature_id: Any) -> None:
        ns, fid = _keys(namespace, feature_id)
        self._data.setdefault(ns, set()).add(fid)
        self._persist()

    def remove(self, namespace: Any, feature_id: Any) -> None:
        ns, fid = _keys(namespace, feature_id)
        ids = self._data.get(ns)
        if ids is not None:
            ids.discard(fid)
        self._persist()

    def contains(self, namespace: Any, feature_id: Any) -> bool:
        try:
            ns, fid = _keys(namespace, feature_id)
        except InvalidKey:
            return False
        return fid in self._data.get(ns, ())

    def ids_for(self, namespace: Any) -> frozenset[str]:
        try:
            ns = normalize_feature_id(namespace)
        except InvalidKey:
            return frozenset()
        return frozenset(self._data.get(ns, ()))

    def export_all(self) -> dict[str, list[str]]:
        return {ns: sorted(ids) for ns, ids in self._data.items() if ids}

    def total(self) -> int:
        return sum(len(ids) for ids in self._data.values())

    def replace_all(self, data: Any) -> None:
        """
        Destructive full replace; the caller is expected to have confirmed it.
        """
        self._data = parse_checkin_mapping(data)
        self._persist()

    def clear(self) -> None:
        self._data = {}
        self._persist()

    def _persist(self) -> None:
        write_json_object(self.kv, CHECKIN_KEY, self.export_all())


def _keys(namespace: Any, feature_id: Any) -> tuple[str, str]:
    return normalize_feature_id(namespace), normalize_feature_id(feature_id)


def parse_checkin_mapping(data: Any) -> dict[str, set[str]]:
    if not isinstance(data, dict):
        raise InvalidFormat("Checkin data must be an object of namespace -> [ids]")
    out: dict[str, set[str]] = {}
    for ns, ids in data.items():
        if not isinstance(ns, str) or not isinstance(ids, list):
            raise InvalidFormat(f"Checkin namespace {ns!r} must map to a list of ids")
        try:
            key = normalize_feature_id(ns)
            out[key] = {normalize_feature_id(i) for i in ids}
        except InvalidKey as e:
            raise InvalidFormat(f"Invalid id in namespace {ns!r}: {e}") from e
    return out
