"""
Environment configuration.

Values come from the process environment, optionally seeded from a `.env`
file by the entry points. Every missing required value is reported in a
single ConfigurationError so an operator can fix them all at once.
"""
import os
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator

from lptrace.core.entities.submission import ByIndex, ByLabel, ColumnSource, PipelineConfig
from lptrace.core.entities.verdict import Thresholds
from lptrace.core.errors import ConfigurationError
from lptrace.infrastructure.gateways.defillama_prices import DEFAULT_PRICE_API_URL
from lptrace.infrastructure.gateways.jupiter_tokens import DEFAULT_TOKEN_LIST_URL
from lptrace.infrastructure.gateways.meteora_api import DEFAULT_DLMM_API_URL


def parse_date_ms(value: str) -> int:
    """ISO date or datetime to epoch ms. Values without an offset are UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class ServiceSettings(BaseModel):
    """Settings needed to talk to the outside world (API and CLI)."""
    rpc_url: str
    origin_url: Optional[str] = None
    throttle_limit: int = 10
    redis_url: Optional[str] = None
    dlmm_api_url: str = DEFAULT_DLMM_API_URL
    token_list_url: str = DEFAULT_TOKEN_LIST_URL
    price_api_url: str = DEFAULT_PRICE_API_URL
    log_level: str = "INFO"

    @field_validator("throttle_limit")
    @classmethod
    def _positive_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("THROTTLE_LIMIT must be at least 1")
        return v


class Settings(ServiceSettings):
    """Full batch configuration."""
    signature_column_label: Optional[str] = None
    signature_column_index: Optional[int] = None
    wallet_column_label: Optional[str] = None
    wallet_column_index: Optional[int] = None
    data_file: str
    output_file: str = "out.csv"
    start_date: str
    end_date: str
    min_usd_deposit_value: float
    min_profit_percent: float = 0.0
    min_hours_open: float
    require_wallet_match: Optional[bool] = None
    profit_sanity_ceiling: float = 10.0

    @field_validator("start_date", "end_date")
    @classmethod
    def _iso_date(cls, v: str) -> str:
        parse_date_ms(v)
        return v

    @property
    def signature_source(self) -> ColumnSource:
        if self.signature_column_label:
            return ByLabel(label=self.signature_column_label)
        return ByIndex(index=self.signature_column_index)

    @property
    def wallet_source(self) -> Optional[ColumnSource]:
        if self.wallet_column_label:
            return ByLabel(label=self.wallet_column_label)
        if self.wallet_column_index is not None:
            return ByIndex(index=self.wallet_column_index)
        return None

    def thresholds(self) -> Thresholds:
        return Thresholds(
            min_usd_deposit=self.min_usd_deposit_value,
            min_profit_percent=self.min_profit_percent,
            min_hours_open=self.min_hours_open,
            window_start_ms=parse_date_ms(self.start_date),
            window_end_ms=parse_date_ms(self.end_date),
            profit_sanity_ceiling=self.profit_sanity_ceiling,
        )

    def to_pipeline_config(self) -> PipelineConfig:
        wallet_source = self.wallet_source
        require_wallet_match = self.require_wallet_match
        if require_wallet_match is None:
            require_wallet_match = wallet_source is not None
        return PipelineConfig(
            signature_source=self.signature_source,
            wallet_source=wallet_source,
            require_wallet_match=require_wallet_match,
            thresholds=self.thresholds(),
            throttle_limit=self.throttle_limit,
        )


_SERVICE_REQUIRED = ["RPC_URL"]
_BATCH_REQUIRED = ["DATA_FILE", "START_DATE", "END_DATE", "MIN_USD_DEPOSIT_VALUE", "MIN_HOURS_OPEN"]


def _from_env(model: type, env: Mapping[str, str]) -> dict:
    values = {}
    for name in model.model_fields:
        raw = env.get(name.upper())
        if raw is not None and raw.strip() != "":
            values[name] = raw.strip()
    return values


def _build(model: type, env: Mapping[str, str], missing: List[str]):
    if missing:
        raise ConfigurationError(
            "Missing required environment variables: " + ", ".join(missing)
        )
    try:
        return model(**_from_env(model, env))
    except ValidationError as e:
        problems = "; ".join(
            f"{str(err['loc'][0]).upper() if err['loc'] else '?'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


def _missing(env: Mapping[str, str], names: List[str]) -> List[str]:
    return [name for name in names if not (env.get(name) or "").strip()]


def load_service_settings(env: Optional[Mapping[str, str]] = None) -> ServiceSettings:
    env = os.environ if env is None else env
    return _build(ServiceSettings, env, _missing(env, _SERVICE_REQUIRED))


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    missing = _missing(env, _SERVICE_REQUIRED + _BATCH_REQUIRED)
    if not (env.get("SIGNATURE_COLUMN_LABEL") or "").strip() and not (env.get("SIGNATURE_COLUMN_INDEX") or "").strip():
        missing.insert(0, "SIGNATURE_COLUMN_LABEL (or SIGNATURE_COLUMN_INDEX)")
    return _build(Settings, env, missing)
