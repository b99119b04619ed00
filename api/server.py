from __future__ import annotations

import io
import logging
import math
import os
import uuid
from threading import Lock
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator, model_validator

from services.models import (
    BatteryConfig,
    DailySolar,
    DailyUsage,
    EXPORT_COMPONENTS,
    IMPORT_COMPONENTS,
    InsufficientData,
    ProviderTariff,
)
from services.projection import AnalysisConfig, project, project_history
from services.seasonal import (
    SEASONS,
    SeasonalProfile,
    aggregate_seasons,
    manual_profiles,
    reconstruct_true_consumption,
)
from services.sizing import SizingOptions, recommend
from services.tariffs import registered_components
from utils.io import read_solar_csv, read_usage_csv
from utils.providers import default_providers, provider_from_mapping, provider_to_mapping

logger = logging.getLogger(__name__)

_DEFAULT_CFG = AnalysisConfig()
HourlyValues = Annotated[List[float], Field(min_length=24, max_length=24)]


class UsageRow(BaseModel):
    date: str
    consumption: HourlyValues
    feed_in: Optional[HourlyValues] = None

    def to_usage(self) -> DailyUsage:
        if self.feed_in is None:
            return DailyUsage(date=self.date, consumption=tuple(self.consumption))
        return DailyUsage(date=self.date, consumption=tuple(self.consumption), feed_in=tuple(self.feed_in))


class SolarRow(BaseModel):
    date: str
    hourly: HourlyValues

    def to_solar(self) -> DailySolar:
        return DailySolar(date=self.date, hourly=tuple(self.hourly))


class SeasonalProfilePayload(BaseModel):
    avg_peak: float = Field(default=0.0, ge=0)
    avg_shoulder: float = Field(default=0.0, ge=0)
    avg_off_peak: float = Field(default=0.0, ge=0)
    avg_solar: float = Field(default=0.0, ge=0)


class DataSource(BaseModel):
    usage_upload_id: Optional[str] = None
    solar_upload_id: Optional[str] = None
    usage_rows: Optional[List[UsageRow]] = None
    solar_rows: Optional[List[SolarRow]] = None
    manual_profiles: Optional[Dict[str, SeasonalProfilePayload]] = None

    @field_validator("manual_profiles")
    @classmethod
    def _validate_seasons(
        cls, value: Optional[Dict[str, SeasonalProfilePayload]]
    ) -> Optional[Dict[str, SeasonalProfilePayload]]:
        if value:
            unknown = sorted(set(value).difference(SEASONS))
            if unknown:
                raise ValueError(f"Unknown seasons {unknown}; expected keys from {list(SEASONS)}")
        return value


class BatteryPayload(BaseModel):
    capacity_kwh: float = Field(default=0.0, ge=0)
    inverter_kw: float = Field(default=0.0, ge=0)

    def to_config(self) -> BatteryConfig:
        return BatteryConfig(capacity_kwh=self.capacity_kwh, inverter_kw=self.inverter_kw)


class GridChargePayload(BaseModel):
    enabled: bool = False
    start_hour: int = Field(default=23, ge=0, le=23)
    end_hour: Union[int, Literal["Threshold"], None] = 5
    target_soc_pct: float = Field(default=80.0, ge=0, le=100)
    trigger_soc_pct: Optional[float] = Field(default=None, ge=0, le=100)


class SpecialConditionPayload(BaseModel):
    metric: Literal["peak_import", "net_grid_usage", "import_in_window"]
    operator: Literal["less_than", "less_than_or_equal_to", "greater_than", "greater_than_or_equal_to"]
    threshold: float
    action: Literal["flat_credit", "flat_charge"] = "flat_credit"
    amount: float = 0.0
    hours: Union[str, List[int], None] = None
    months: List[int] = Field(default_factory=list)


class ProviderPayload(BaseModel):
    """Provider definition as stored and edited by clients."""

    id: str = Field(min_length=1)
    name: Optional[str] = None
    import_component: str
    export_component: str
    import_rates: Dict[str, Any] = Field(default_factory=dict)
    export_rates: Dict[str, Any] = Field(default_factory=dict)
    peak_hours: Union[str, List[int], None] = None
    shoulder_hours: Union[str, List[int], None] = None
    off_peak_hours: Union[str, List[int], None] = None
    grid_charge: GridChargePayload = Field(default_factory=GridChargePayload)
    daily_charge: float = Field(default=0.0, ge=0)
    monthly_fee: float = Field(default=0.0, ge=0)
    rebate: float = Field(default=0.0, ge=0)
    special_conditions: List[SpecialConditionPayload] = Field(default_factory=list)

    @model_validator(mode="after")
    def _known_components(self) -> "ProviderPayload":
        components = registered_components()
        if self.import_component not in components["import"]:
            raise ValueError(f"import_component must be one of {list(IMPORT_COMPONENTS)}")
        if self.export_component not in components["export"]:
            raise ValueError(f"export_component must be one of {list(EXPORT_COMPONENTS)}")
        return self

    def to_provider(self) -> ProviderTariff:
        try:
            return provider_from_mapping(self.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc


class AnalysisConfigPayload(BaseModel):
    """Pydantic mirror of :class:`AnalysisConfig` for FastAPI requests."""

    selected_providers: List[str] = Field(default_factory=list)
    num_years: int = Field(default=_DEFAULT_CFG.num_years, ge=1, le=50)
    tariff_escalation_pct: float = Field(default=_DEFAULT_CFG.tariff_escalation_pct, ge=0)
    solar_degradation_pct: float = Field(default=_DEFAULT_CFG.solar_degradation_pct, ge=0, le=100)
    battery_degradation_pct: float = Field(default=_DEFAULT_CFG.battery_degradation_pct, ge=0, le=100)
    loan_enabled: bool = _DEFAULT_CFG.loan_enabled
    loan_amount: float = Field(default=0.0, ge=0)
    loan_interest_rate_pct: float = Field(default=0.0, ge=0)
    loan_term_years: int = Field(default=0, ge=0)
    discount_rate_enabled: bool = _DEFAULT_CFG.discount_rate_enabled
    discount_rate_pct: float = Field(default=0.0, ge=0)
    coverage_target: float = Field(default=_DEFAULT_CFG.coverage_target, ge=0)
    blackout_duration_hours: int = Field(default=0, ge=0)
    blackout_coverage_pct: float = Field(default=0.0, ge=0, le=100)
    battery: BatteryPayload = Field(default_factory=BatteryPayload)
    existing_battery: BatteryPayload = Field(default_factory=BatteryPayload)
    existing_system_age_years: float = Field(default=0.0, ge=0)
    existing_solar_kw: float = Field(default=0.0, ge=0)
    new_solar_kw: float = Field(default=0.0, ge=0)
    replace_existing_system: bool = False
    cost_solar: float = Field(default=0.0, ge=0)
    cost_battery: float = Field(default=0.0, ge=0)
    solar_yield_kwh_per_kw: float = Field(default=_DEFAULT_CFG.solar_yield_kwh_per_kw, ge=0)
    fit_degradation_pct: float = Field(default=0.0, ge=0, le=100)
    fit_minimum_rate: Optional[float] = None

    def build(self) -> AnalysisConfig:
        data = self.model_dump(exclude={"battery", "existing_battery"})
        return AnalysisConfig(
            battery_config=self.battery.to_config(),
            existing_battery=self.existing_battery.to_config(),
            **data,
        )


class SeasonalRequest(BaseModel):
    data: DataSource
    peak_hours: Union[str, List[int], None] = None
    shoulder_hours: Union[str, List[int], None] = None


class AnalyzeRequest(BaseModel):
    config: AnalysisConfigPayload = Field(default_factory=AnalysisConfigPayload)
    data: DataSource
    providers: Optional[List[ProviderPayload]] = None
    # Replay every historical day instead of the seasonal representative days.
    replay_history: bool = False


class SizingRequest(BaseModel):
    data: DataSource
    config: AnalysisConfigPayload = Field(default_factory=AnalysisConfigPayload)
    percentile: float = Field(default=0.9, gt=0, le=1)


class UploadPayload(BaseModel):
    kind: Literal["usage", "solar"]
    csv_text: str = Field(min_length=1)
    name: Optional[str] = None
    timestamp_col: str = "timestamp"
    type_col: str = "usage_type"
    kwh_col: str = "kwh"
    dayfirst: bool = False


class UploadStore:
    """In-memory cache of parsed usage and solar histories."""

    def __init__(self) -> None:
        self._usage: Dict[str, List[DailyUsage]] = {}
        self._solar: Dict[str, List[DailySolar]] = {}
        self._lock = Lock()

    def store_usage(self, records: List[DailyUsage], name: Optional[str] = None) -> str:
        upload_id = name or str(uuid.uuid4())
        with self._lock:
            self._usage[upload_id] = list(records)
        return upload_id

    def store_solar(self, records: List[DailySolar], name: Optional[str] = None) -> str:
        upload_id = name or str(uuid.uuid4())
        with self._lock:
            self._solar[upload_id] = list(records)
        return upload_id

    def get_usage(self, upload_id: str) -> List[DailyUsage]:
        with self._lock:
            if upload_id not in self._usage:
                raise HTTPException(status_code=404, detail=f"Usage upload '{upload_id}' not found.")
            return list(self._usage[upload_id])

    def get_solar(self, upload_id: str) -> List[DailySolar]:
        with self._lock:
            if upload_id not in self._solar:
                raise HTTPException(status_code=404, detail=f"Solar upload '{upload_id}' not found.")
            return list(self._solar[upload_id])


class ProviderStore:
    """In-memory provider configurations, seeded with the built-in presets."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._providers: Dict[str, ProviderTariff] = default_providers()

    def list_all(self) -> List[ProviderTariff]:
        with self._lock:
            return list(self._providers.values())

    def snapshot(self) -> Dict[str, ProviderTariff]:
        with self._lock:
            return dict(self._providers)

    def put(self, provider: ProviderTariff) -> None:
        with self._lock:
            self._providers[provider.provider_id] = provider

    def delete(self, provider_id: str) -> None:
        with self._lock:
            if provider_id not in self._providers:
                raise HTTPException(status_code=404, detail=f"Provider '{provider_id}' not found.")
            del self._providers[provider_id]

    def reset(self) -> None:
        with self._lock:
            self._providers = default_providers()


def _clean_json(value: Any) -> Any:
    """Replace NaN/inf with None so responses stay valid JSON."""

    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {key: _clean_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean_json(item) for item in value]
    return value


def _insufficient(result: InsufficientData) -> Dict[str, Any]:
    return result.to_dict()


def _resolve_history(data: DataSource, store: UploadStore) -> Tuple[List[DailyUsage], List[DailySolar]]:
    try:
        if data.usage_rows:
            usage = [row.to_usage() for row in data.usage_rows]
        elif data.usage_upload_id:
            usage = store.get_usage(data.usage_upload_id)
        else:
            usage = []

        if data.solar_rows:
            solar = [row.to_solar() for row in data.solar_rows]
        elif data.solar_upload_id:
            solar = store.get_solar(data.solar_upload_id)
        else:
            solar = []
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return usage, solar


def _resolve_profiles(
    data: DataSource,
    store: UploadStore,
    peak_hours: Union[str, List[int], None] = None,
    shoulder_hours: Union[str, List[int], None] = None,
    true_consumption: bool = False,
) -> Dict[str, SeasonalProfile]:
    """Seasonal profiles from manual averages or usage history.

    With ``true_consumption`` and a solar history, self-consumed solar is added
    back onto metered import so the profiles describe household load.
    """

    if data.manual_profiles:
        return manual_profiles({season: entry.model_dump() for season, entry in data.manual_profiles.items()})
    usage, solar = _resolve_history(data, store)
    if true_consumption and solar:
        usage = reconstruct_true_consumption(usage, solar)
    return aggregate_seasons(usage, solar, peak_hours=peak_hours, shoulder_hours=shoulder_hours)


uploads = UploadStore()
providers = ProviderStore()
app = FastAPI(
    title="Solar ROI Lab API",
    description="REST API for seasonal aggregation, tariff projection and battery sizing.",
    version="0.1.0",
)


_default_cors_origins = [
    # Vite dev/preview servers
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
]
_allowed_origins_env = os.getenv("ROILAB_CORS_ORIGINS", "")
_allowed_origins = [
    origin.strip()
    for origin in _allowed_origins_env.split(",")
    if origin.strip()
] or _default_cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, str]:
    """Simple liveness check for container orchestrators."""
    return {"status": "ok"}


@app.get("/providers")
def list_providers() -> Dict[str, Any]:
    return {"providers": [provider_to_mapping(p) for p in providers.list_all()]}


@app.put("/providers/{provider_id}")
def put_provider(provider_id: str, payload: ProviderPayload) -> Dict[str, Any]:
    """Create or replace a provider; the path id wins over the body id."""

    provider = payload.model_copy(update={"id": provider_id}).to_provider()
    providers.put(provider)
    return {"provider": provider_to_mapping(provider)}


@app.delete("/providers/{provider_id}")
def delete_provider(provider_id: str) -> Dict[str, str]:
    providers.delete(provider_id)
    return {"status": "deleted", "id": provider_id}


@app.post("/uploads")
def create_upload(payload: UploadPayload) -> Dict[str, Any]:
    """Parse a usage or solar CSV and cache the daily records for reuse."""

    buffer = io.StringIO(payload.csv_text)
    try:
        if payload.kind == "usage":
            records = read_usage_csv(
                buffer,
                timestamp_col=payload.timestamp_col,
                type_col=payload.type_col,
                kwh_col=payload.kwh_col,
                dayfirst=payload.dayfirst,
            )
            upload_id = uploads.store_usage(records, payload.name)
        else:
            records = read_solar_csv(
                buffer,
                timestamp_col=payload.timestamp_col,
                kwh_col=payload.kwh_col,
                dayfirst=payload.dayfirst,
            )
            upload_id = uploads.store_solar(records, payload.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"upload_id": upload_id, "days": len(records)}


@app.post("/seasonal")
def seasonal(request: SeasonalRequest) -> Dict[str, Any]:
    """Return representative seasonal days for the supplied history."""

    profiles = _resolve_profiles(request.data, uploads, request.peak_hours, request.shoulder_hours)
    if not profiles:
        return _insufficient(InsufficientData("No usage days fall into any season."))
    return {"status": "ok", "profiles": {season: p.to_dict() for season, p in profiles.items()}}


@app.post("/analyze")
def analyze(request: AnalyzeRequest) -> Dict[str, Any]:
    """Project costs and savings for the selected providers."""

    try:
        cfg = request.config.build()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    available = providers.snapshot()
    for payload in request.providers or []:
        provider = payload.to_provider()
        available[provider.provider_id] = provider

    if request.replay_history:
        usage, solar = _resolve_history(request.data, uploads)
        result = project_history(cfg, usage, solar, available)
    else:
        profiles = _resolve_profiles(request.data, uploads, true_consumption=True)
        result = project(cfg, profiles, available)
    if isinstance(result, InsufficientData):
        return _insufficient(result)
    return _clean_json(result.to_dict())


@app.post("/sizing")
def sizing(request: SizingRequest) -> Dict[str, Any]:
    """Recommend battery, inverter and solar sizes from usage history."""

    cfg = request.config
    usage, solar = _resolve_history(request.data, uploads)

    peak_hours = None
    if cfg.selected_providers:
        provider = providers.snapshot().get(cfg.selected_providers[0])
        if provider is not None and provider.peak_hours:
            peak_hours = tuple(provider.peak_hours)

    options = SizingOptions(
        existing_solar_kw=cfg.existing_solar_kw,
        new_solar_kw=cfg.new_solar_kw,
        replace_existing_system=cfg.replace_existing_system,
        solar_yield_kwh_per_kw=cfg.solar_yield_kwh_per_kw,
        blackout_duration_hours=cfg.blackout_duration_hours,
        blackout_coverage_pct=cfg.blackout_coverage_pct,
        peak_hours=peak_hours,
        percentile=request.percentile,
    )
    result = recommend(usage, solar, cfg.coverage_target, cfg.battery.to_config(), options)
    if isinstance(result, InsufficientData):
        return _insufficient(result)
    return _clean_json(result.to_dict())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=False)
