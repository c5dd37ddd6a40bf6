from .store import CheckinStore, normalize_feature_id
from .transfer import ImportPlan, apply_import, build_export, parse_import, plan_import

__all__ = [
    "CheckinStore",
    "ImportPlan",
    "apply_import",
    "build_export",
    "normalize_feature_id",
    "parse_import",
    "plan_import",
]
