from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from dotenv import load_dotenv

from .decoder import MONACO_CREATE_ORDER_LAYOUT, MONACO_PROGRAM_ID, InstructionLayout


class ConfigError(ValueError):
    """Startup configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    target_addresses: tuple[str, ...]
    program_ids: tuple[str, ...]
    max_position_size: Decimal
    max_daily_loss: Decimal
    copy_multiplier: Decimal
    poll_interval_seconds: float
    cycle_timeout_seconds: float
    signature_lookback: int
    seen_cache_size: int
    rpc_timeout_seconds: float
    dry_run: bool
    order_relay_url: str | None
    order_relay_token: str | None
    health_log_interval_seconds: int
    log_level: str
    decoder_layouts: dict[str, InstructionLayout] = field(default_factory=dict)


def _required(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _optional_str(name: str) -> str | None:
    return os.getenv(name, "").strip() or None


def _optional_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _optional_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _poll_interval_seconds() -> float:
    # POLL_INTERVAL is the older millisecond setting.
    if (os.getenv("POLL_INTERVAL_SECONDS") or "").strip() == "" and (os.getenv("POLL_INTERVAL") or "").strip():
        return _optional_float("POLL_INTERVAL", 5000.0) / 1000
    return _optional_float("POLL_INTERVAL_SECONDS", 5.0)


def _optional_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        raw = default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ConfigError(f"{name} must be a decimal number, got {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise ConfigError(f"{name} must be a non-negative number, got {raw!r}")
    return value


def _optional_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _optional_list(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _optional_json(name: str) -> dict[str, Any] | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{name} is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError(f"{name} must decode to a JSON object")
    return parsed


def _decoder_layouts(program_ids: tuple[str, ...]) -> dict[str, InstructionLayout]:
    layouts: dict[str, InstructionLayout] = {MONACO_PROGRAM_ID: MONACO_CREATE_ORDER_LAYOUT}
    for program_id, raw in (_optional_json("DECODER_LAYOUTS") or {}).items():
        if not isinstance(raw, dict):
            raise ConfigError(f"DECODER_LAYOUTS[{program_id}] must be a JSON object")
        try:
            layouts[program_id] = InstructionLayout.from_dict(raw)
        except ValueError as exc:
            raise ConfigError(f"DECODER_LAYOUTS[{program_id}]: {exc}") from exc
    return {pid: layout for pid, layout in layouts.items() if pid in program_ids}


def load_settings() -> Settings:
    load_dotenv()

    program_ids = _optional_list("PREDICTION_MARKET_PROGRAMS", (MONACO_PROGRAM_ID,))
    dry_run = _optional_bool("DRY_RUN", False)
    settings = Settings(
        rpc_url=os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com").strip(),
        target_addresses=_optional_list("TARGET_ADDRESSES"),
        program_ids=program_ids,
        max_position_size=_optional_decimal("MAX_POSITION_SIZE", "1.0"),
        max_daily_loss=_optional_decimal("MAX_DAILY_LOSS", "5.0"),
        copy_multiplier=_optional_decimal("COPY_MULTIPLIER", "1.0"),
        poll_interval_seconds=_poll_interval_seconds(),
        cycle_timeout_seconds=_optional_float("CYCLE_TIMEOUT_SECONDS", 60.0),
        signature_lookback=_optional_int("SIGNATURE_LOOKBACK", 10),
        seen_cache_size=_optional_int("SEEN_CACHE_SIZE", 1000),
        rpc_timeout_seconds=_optional_float("RPC_TIMEOUT_SECONDS", 15.0),
        dry_run=dry_run,
        order_relay_url=_optional_str("ORDER_RELAY_URL") if dry_run else _required("ORDER_RELAY_URL"),
        order_relay_token=_optional_str("ORDER_RELAY_TOKEN") if dry_run else _required("ORDER_RELAY_TOKEN"),
        health_log_interval_seconds=_optional_int("HEALTH_LOG_INTERVAL_SECONDS", 60),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        decoder_layouts=_decoder_layouts(program_ids),
    )
    validate_settings(settings)
    return settings


def validate_settings(settings: Settings) -> None:
    if not settings.decoder_layouts:
        raise ConfigError(
            "None of PREDICTION_MARKET_PROGRAMS has an instruction layout; "
            "add the program to DECODER_LAYOUTS"
        )
    if settings.signature_lookback <= 0:
        raise ConfigError("SIGNATURE_LOOKBACK must be positive")
    if settings.seen_cache_size < settings.signature_lookback:
        raise ConfigError("SEEN_CACHE_SIZE must be at least SIGNATURE_LOOKBACK")
    if settings.poll_interval_seconds <= 0 or settings.cycle_timeout_seconds <= 0:
        raise ConfigError("POLL_INTERVAL_SECONDS and CYCLE_TIMEOUT_SECONDS must be positive")
    if settings.copy_multiplier == 0:
        raise ConfigError("COPY_MULTIPLIER must be greater than zero")
    if settings.health_log_interval_seconds <= 0:
        raise ConfigError("HEALTH_LOG_INTERVAL_SECONDS must be positive")
