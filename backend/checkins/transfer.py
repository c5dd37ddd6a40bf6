from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from checkins.store import CheckinStore, parse_checkin_mapping
from errors import InvalidFormat

EXPORT_VERSION = "1.0"


class CheckinExport(BaseModel):
    """
    On-disk checkin export.

    `totalPoints` is informational only and is not checked against `shubyoData`.
    """

    model_config = ConfigDict(extra="ignore")

    version: str = EXPORT_VERSION
    exportDate: str | None = None
    shubyoData: dict[str, list[str | int | float]]
    totalPoints: int | None = None


def build_export(store: CheckinStore, *, now: datetime | None = None) -> dict[str, Any]:
    data = store.export_all()
    ts = (now or datetime.now(timezone.utc)).isoformat()
    return {
        "version": EXPORT_VERSION,
        "exportDate": ts,
        "shubyoData": data,
        "totalPoints": sum(len(ids) for ids in data.values()),
    }


def export_filename(*, now: datetime | None = None) -> str:
    d = (now or datetime.now(timezone.utc)).date().isoformat()
    return f"shubyo-data-{d}.json"


def parse_import(raw: str | bytes | dict[str, Any]) -> CheckinExport:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise InvalidFormat(f"Import file is not valid JSON: {e}") from e
    if not isinstance(raw, dict) or not isinstance(raw.get("shubyoData"), dict):
        raise InvalidFormat("Import file has no 'shubyoData' object")
    try:
        return CheckinExport.model_validate(raw)
    except ValidationError as e:
        raise InvalidFormat(f"Import file has an invalid 'shubyoData' object: {e}") from e


@dataclass(frozen=True)
class ImportPlan:
    """
    What an import would do, shown to the user before they confirm it.

    `checkins` holds the file's ids normalised and deduplicated, so `added_points`
    is what the store holds after a confirmed import.
    """

    payload: CheckinExport
    checkins: dict[str, frozenset[str]]
    replaced_points: int  # currently stored, will be discarded
    added_points: int

    @property
    def data(self) -> dict[str, list[str]]:
        return {ns: sorted(ids) for ns, ids in self.checkins.items()}


def plan_import(store: CheckinStore, raw: str | bytes | dict[str, Any]) -> ImportPlan:
    payload = parse_import(raw)
    # Placeholder or empty ids fail here, before the user is asked to confirm.
    checkins = {
        ns: frozenset(ids) for ns, ids in parse_checkin_mapping(payload.shubyoData).items()
    }
    return ImportPlan(
        payload=payload,
        checkins=checkins,
        replaced_points=store.total(),
        added_points=sum(len(ids) for ids in checkins.values()),
    )


def apply_import(store: CheckinStore, plan: ImportPlan, *, confirmed: bool) -> bool:
    """
    Replace the whole store with the planned data. Returns False (no change) unless confirmed.
    """
    if not confirmed:
        return False
    store.replace_all(plan.data)
    logger.info(
        f"Imported checkins: replaced {plan.replaced_points}, loaded {plan.added_points}"
    )
    return True
