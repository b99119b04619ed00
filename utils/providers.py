"""Provider presets and conversion between plain mappings and ``ProviderTariff``."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

from services.models import (
    FLAT_RATE_FIT,
    FLAT_RATE_IMPORT,
    GLOBIRD_COMPLEX_FIT,
    MULTI_TIER_FIT,
    TIME_OF_USE_IMPORT,
    GridChargeConfig,
    ProviderTariff,
    SpecialCondition,
)
from utils.time_ranges import normalize_hours

logger = logging.getLogger(__name__)

THRESHOLD_MODE = "Threshold"

DEFAULT_PROVIDER_MAPPINGS: List[Dict[str, Any]] = [
    {
        "id": "Origin",
        "name": "Origin Energy",
        "import_component": TIME_OF_USE_IMPORT,
        "export_component": MULTI_TIER_FIT,
        "daily_charge": 1.1605,
        "import_rates": {"peak": 0.59653, "shoulder": 0.29425, "off_peak": 0.35233},
        "export_rates": {"tiers": [{"limit": 14, "rate": 0.10}, {"limit": None, "rate": 0.02}]},
        "peak_hours": "7am-10am, 4pm-10pm",
        "shoulder_hours": "10am-4pm",
        "off_peak_hours": "10pm-7am",
        "grid_charge": {"enabled": False, "start_hour": 23, "end_hour": 5},
    },
    {
        "id": "GloBird",
        "name": "GloBird",
        "import_component": TIME_OF_USE_IMPORT,
        "export_component": GLOBIRD_COMPLEX_FIT,
        "daily_charge": 1.364,
        "import_rates": {"peak": 0.528, "shoulder": 0.396, "off_peak": 0.0},
        "export_rates": {
            "bonus_rate": 0.12,
            "bonus_limit": 10,
            "tou_rates": [
                {"name": "4pm-9pm", "hours": "4pm-9pm", "rate": 0.03},
                {"name": "10am-2pm", "hours": "10am-2pm", "rate": 0.0},
                {"name": "other", "hours": "", "rate": 0.003},
            ],
        },
        "peak_hours": "3pm-11pm",
        "shoulder_hours": "7am-11am, 10pm-12am",
        "off_peak_hours": "12am-7am, 11am-3pm",
        "grid_charge": {"enabled": False, "start_hour": 23, "end_hour": 5},
    },
    {
        "id": "Amber",
        "name": "Amber",
        "import_component": FLAT_RATE_IMPORT,
        "export_component": FLAT_RATE_FIT,
        "daily_charge": 1.091,
        "monthly_fee": 25,
        "import_rates": {"rate": 0.355},
        "export_rates": {"rate": 0.007},
        "grid_charge": {"enabled": False, "start_hour": 23, "end_hour": 5},
    },
    {
        "id": "AGL",
        "name": "AGL Energy",
        "import_component": TIME_OF_USE_IMPORT,
        "export_component": FLAT_RATE_FIT,
        "daily_charge": 1.2,
        "import_rates": {"peak": 0.5, "shoulder": 0.3, "off_peak": 0.2},
        "export_rates": {"rate": 0.05},
        "peak_hours": "3pm-11pm",
        "shoulder_hours": "7am-11am, 10pm-12am",
        "off_peak_hours": "12am-7am, 11am-3pm",
        "grid_charge": {"enabled": False, "start_hour": 23, "end_hour": 5},
    },
]


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return _float(value)


def _grid_charge_from_mapping(data: Optional[Mapping[str, Any]]) -> GridChargeConfig:
    if not data:
        return GridChargeConfig()
    end_raw = data.get("end_hour", 5)
    if end_raw is None or (isinstance(end_raw, str) and end_raw.strip().lower() == THRESHOLD_MODE.lower()):
        end_hour: Optional[int] = None
    else:
        end_hour = int(end_raw)
    start_hour = int(data.get("start_hour", 23))
    if not 0 <= start_hour < 24 or (end_hour is not None and not 0 <= end_hour <= 24):
        raise ValueError("Grid charge hours must be within 0-24.")
    return GridChargeConfig(
        enabled=bool(data.get("enabled", False)),
        start_hour=start_hour,
        end_hour=end_hour,
        target_soc_pct=_float(data.get("target_soc_pct", 80.0), 80.0),
        trigger_soc_pct=_optional_float(data.get("trigger_soc_pct")),
    )


def _condition_from_mapping(data: Mapping[str, Any]) -> SpecialCondition:
    months = tuple(sorted({int(m) for m in data.get("months") or [] if 1 <= int(m) <= 12}))
    return SpecialCondition(
        metric=str(data.get("metric", "")),
        operator=str(data.get("operator", "")),
        threshold=_float(data.get("threshold")),
        action=str(data.get("action", "flat_credit")),
        amount=_float(data.get("amount")),
        hours=normalize_hours(data.get("hours")),
        months=months,
    )


def provider_from_mapping(data: Mapping[str, Any]) -> ProviderTariff:
    """Build a ``ProviderTariff`` from a JSON-style mapping.

    Hour sets accept either range strings ('7am-10am, 4pm-10pm') or lists of
    hours. Rate tables are passed through untouched; the tariff recipes read
    them leniently.
    """

    provider_id = str(data.get("id") or data.get("provider_id") or "").strip()
    if not provider_id:
        raise ValueError("Provider mapping requires a non-empty 'id'.")

    return ProviderTariff(
        provider_id=provider_id,
        name=str(data.get("name") or provider_id),
        import_component=str(data.get("import_component") or FLAT_RATE_IMPORT),
        export_component=str(data.get("export_component") or FLAT_RATE_FIT),
        import_data=copy.deepcopy(dict(data.get("import_rates") or {})),
        export_data=copy.deepcopy(dict(data.get("export_rates") or {})),
        peak_hours=normalize_hours(data.get("peak_hours")),
        shoulder_hours=normalize_hours(data.get("shoulder_hours")),
        off_peak_hours=normalize_hours(data.get("off_peak_hours")),
        grid_charge=_grid_charge_from_mapping(data.get("grid_charge")),
        daily_charge=_float(data.get("daily_charge")),
        monthly_fee=_float(data.get("monthly_fee")),
        rebate=_float(data.get("rebate")),
        special_conditions=[_condition_from_mapping(c) for c in data.get("special_conditions") or []],
    )


def provider_to_mapping(provider: ProviderTariff) -> Dict[str, Any]:
    grid_charge = provider.grid_charge
    return {
        "id": provider.provider_id,
        "name": provider.name,
        "import_component": provider.import_component,
        "export_component": provider.export_component,
        "import_rates": copy.deepcopy(provider.import_data),
        "export_rates": copy.deepcopy(provider.export_data),
        "peak_hours": list(provider.peak_hours),
        "shoulder_hours": list(provider.shoulder_hours),
        "off_peak_hours": list(provider.off_peak_hours),
        "grid_charge": {
            "enabled": grid_charge.enabled,
            "start_hour": grid_charge.start_hour,
            "end_hour": THRESHOLD_MODE if grid_charge.threshold_mode else grid_charge.end_hour,
            "target_soc_pct": grid_charge.target_soc_pct,
            "trigger_soc_pct": grid_charge.trigger_soc_pct,
        },
        "daily_charge": provider.daily_charge,
        "monthly_fee": provider.monthly_fee,
        "rebate": provider.rebate,
        "special_conditions": [
            {
                "metric": c.metric,
                "operator": c.operator,
                "threshold": c.threshold,
                "action": c.action,
                "amount": c.amount,
                "hours": list(c.hours),
                "months": list(c.months),
            }
            for c in provider.special_conditions
        ],
    }


def default_providers() -> Dict[str, ProviderTariff]:
    """Return fresh copies of the built-in provider presets keyed by id."""

    providers = {}
    for mapping in DEFAULT_PROVIDER_MAPPINGS:
        provider = provider_from_mapping(mapping)
        providers[provider.provider_id] = provider
    logger.debug("Loaded %d default providers", len(providers))
    return providers
