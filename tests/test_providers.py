import pytest

from services.models import GLOBIRD_COMPLEX_FIT, MULTI_TIER_FIT, SpecialCondition
from utils.providers import (
    THRESHOLD_MODE,
    default_providers,
    provider_from_mapping,
    provider_to_mapping,
)


def test_default_presets_cover_known_retailers() -> None:
    providers = default_providers()

    assert set(providers) == {"Origin", "GloBird", "Amber", "AGL"}
    assert providers["Origin"].export_component == MULTI_TIER_FIT
    assert providers["Origin"].tier1_export_limit() == 14.0
    assert providers["GloBird"].export_component == GLOBIRD_COMPLEX_FIT
    assert providers["GloBird"].peak_hours == tuple(range(15, 23))
    assert providers["Amber"].monthly_fee == 25.0


def test_default_presets_are_independent_copies() -> None:
    first = default_providers()
    first["Amber"].import_data["rate"] = 9.99

    assert default_providers()["Amber"].import_data["rate"] == pytest.approx(0.355)


@pytest.mark.parametrize("provider_id", ["Origin", "GloBird", "Amber", "AGL"])
def test_presets_survive_mapping_round_trip(provider_id: str) -> None:
    provider = default_providers()[provider_id]

    assert provider_from_mapping(provider_to_mapping(provider)) == provider


def test_threshold_grid_charge_mapping() -> None:
    provider = provider_from_mapping(
        {
            "id": "night",
            "grid_charge": {
                "enabled": True,
                "start_hour": 22,
                "end_hour": "Threshold",
                "target_soc_pct": 60,
                "trigger_soc_pct": "25",
            },
        }
    )

    grid_charge = provider.grid_charge
    assert grid_charge.threshold_mode
    assert grid_charge.window_hours() == tuple(range(24))
    assert grid_charge.is_active(9, soc_kwh=2.0, capacity_kwh=10.0)
    assert not grid_charge.is_active(9, soc_kwh=3.0, capacity_kwh=10.0)
    mapping = provider_to_mapping(provider)["grid_charge"]
    assert mapping["end_hour"] == THRESHOLD_MODE
    assert mapping["trigger_soc_pct"] == 25.0


def test_special_conditions_are_parsed() -> None:
    provider = provider_from_mapping(
        {
            "id": "zero_hero",
            "special_conditions": [
                {
                    "metric": "import_in_window",
                    "operator": "less_than",
                    "threshold": 0.03,
                    "action": "flat_credit",
                    "amount": 1.0,
                    "hours": "6pm-8pm",
                    "months": [13, 1, 2],
                }
            ],
        }
    )

    assert provider.special_conditions == [
        SpecialCondition(
            metric="import_in_window",
            operator="less_than",
            threshold=0.03,
            action="flat_credit",
            amount=1.0,
            hours=(18, 19),
            months=(1, 2),
        )
    ]


def test_mapping_without_id_is_rejected() -> None:
    with pytest.raises(ValueError):
        provider_from_mapping({"name": "Nameless"})


def test_grid_charge_hours_out_of_range_are_rejected() -> None:
    with pytest.raises(ValueError):
        provider_from_mapping({"id": "bad", "grid_charge": {"start_hour": 25, "end_hour": 5}})
