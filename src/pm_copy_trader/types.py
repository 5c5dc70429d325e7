from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


class Outcome(str, Enum):
    YES = "YES"
    NO = "NO"


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    slot: int = 0
    failed: bool = False
    block_time: int | None = None


@dataclass(frozen=True)
class Instruction:
    program_id: str
    accounts: tuple[int, ...]
    data: bytes


@dataclass(frozen=True)
class RawTransaction:
    signature: str
    account_keys: tuple[str, ...]
    instructions: tuple[Instruction, ...]
    failed: bool = False
    block_time: int | None = None


@dataclass(frozen=True)
class DecodedInstruction:
    program_id: str
    market_account: str
    outcome_index: int
    for_outcome: bool
    stake: Decimal
    expected_price: Decimal


@dataclass(frozen=True)
class ParsedTrade:
    market_address: str
    outcome: Outcome
    action: Action
    amount: Decimal
    price: Decimal | None = None
    outcome_index: int = 0
    source_signature: str | None = None
    source_address: str | None = None


@dataclass
class RiskState:
    daily_loss: Decimal = Decimal("0")
    last_reset_date: date = field(default_factory=date.today)
