from __future__ import annotations

from datetime import datetime, timezone

from .types import ParsedTrade


def short_address(address: str | None) -> str:
    if not address:
        return "Unknown"
    addr = address.strip()
    if len(addr) <= 12:
        return addr
    return f"{addr[:4]}...{addr[-4:]}"


def block_time_iso(ts: int | None) -> str:
    if ts is None:
        return "unknown"
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def build_tx_link(signature: str | None) -> str | None:
    if not signature or signature.startswith("dry-run-"):
        return None
    return f"https://solscan.io/tx/{signature}"


def describe_trade(trade: ParsedTrade) -> str:
    price = f"{trade.price}" if trade.price is not None else "market"
    return (
        f"{trade.action.value} {trade.outcome.value} "
        f"(outcome #{trade.outcome_index}) on {short_address(trade.market_address)} "
        f"amount={trade.amount} price={price}"
    )
