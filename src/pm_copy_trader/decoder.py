from __future__ import annotations

import hashlib
import logging
import math
import struct
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from .types import DecodedInstruction, Instruction, RawTransaction

logger = logging.getLogger(__name__)

MONACO_PROGRAM_ID = "monacoUXKtUi6vKsQwaLyxmXKSievfNWEcYXTgkbCih"

_INT_FORMATS = {"u8": "<B", "u16": "<H", "u32": "<I", "u64": "<Q"}
_PRICE_FORMATS = {"f64": "<d", "u64": "<Q"}


class DecodeError(Exception):
    """Instruction payload is not a recognizable order placement."""


def anchor_discriminator(instruction_name: str) -> bytes:
    return hashlib.sha256(f"global:{instruction_name}".encode()).digest()[:8]


@dataclass(frozen=True)
class InstructionLayout:
    """Byte layout of an order-placement instruction.

    Offsets are absolute positions in the instruction data, integers are
    little-endian. ``market_account_position`` indexes the instruction's own
    account-reference list, not the transaction's account keys.
    """

    discriminator: bytes
    outcome_index_offset: int
    for_outcome_offset: int
    stake_offset: int
    price_offset: int
    outcome_index_type: str = "u8"
    stake_decimals: int = 6
    price_type: str = "f64"
    price_decimals: int = 0
    market_account_position: int = 0

    def __post_init__(self) -> None:
        if self.outcome_index_type not in ("u8", "u16", "u32"):
            raise ValueError(f"Unsupported outcome_index_type: {self.outcome_index_type}")
        if self.price_type not in _PRICE_FORMATS:
            raise ValueError(f"Unsupported price_type: {self.price_type}")
        for name in ("outcome_index_offset", "for_outcome_offset", "stake_offset", "price_offset"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.stake_decimals < 0 or self.price_decimals < 0:
            raise ValueError("decimals must be non-negative")
        if self.market_account_position < 0:
            raise ValueError("market_account_position must be non-negative")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> InstructionLayout:
        if "discriminator" in raw:
            discriminator = bytes.fromhex(str(raw["discriminator"]).removeprefix("0x"))
        elif "instruction" in raw:
            discriminator = anchor_discriminator(str(raw["instruction"]))
        else:
            raise ValueError("layout needs either 'discriminator' or 'instruction'")

        fields = {}
        for key in (
            "outcome_index_offset",
            "for_outcome_offset",
            "stake_offset",
            "price_offset",
            "stake_decimals",
            "price_decimals",
            "market_account_position",
        ):
            if key in raw:
                fields[key] = int(raw[key])
        for key in ("outcome_index_type", "price_type"):
            if key in raw:
                fields[key] = str(raw[key])
        try:
            return cls(discriminator=discriminator, **fields)
        except TypeError as exc:
            raise ValueError(f"Incomplete instruction layout: {exc}") from exc


# Monaco create_order: 8-byte Anchor discriminator, outcome index (u8),
# for_outcome flag, stake (u64 in mint base units), price (f64).
MONACO_CREATE_ORDER_LAYOUT = InstructionLayout(
    discriminator=anchor_discriminator("create_order"),
    outcome_index_offset=8,
    for_outcome_offset=9,
    stake_offset=10,
    price_offset=18,
)


class InstructionDecoder(Protocol):
    program_id: str

    def decode(self, instruction: Instruction, account_keys: tuple[str, ...]) -> DecodedInstruction: ...


class LayoutInstructionDecoder:
    def __init__(self, program_id: str, layout: InstructionLayout) -> None:
        self.program_id = program_id
        self.layout = layout

    def decode(self, instruction: Instruction, account_keys: tuple[str, ...]) -> DecodedInstruction:
        layout = self.layout
        data = instruction.data

        if instruction.program_id != self.program_id:
            raise DecodeError(f"instruction belongs to {instruction.program_id}")
        if not data.startswith(layout.discriminator):
            raise DecodeError("discriminator mismatch")

        outcome_index = _read(data, _INT_FORMATS[layout.outcome_index_type], layout.outcome_index_offset)
        flag = _read(data, "<B", layout.for_outcome_offset)
        if flag not in (0, 1):
            raise DecodeError(f"invalid for_outcome flag {flag}")

        raw_stake = _read(data, "<Q", layout.stake_offset)
        stake = Decimal(raw_stake).scaleb(-layout.stake_decimals)

        raw_price = _read(data, _PRICE_FORMATS[layout.price_type], layout.price_offset)
        if layout.price_type == "f64":
            if not math.isfinite(raw_price):
                raise DecodeError("price is not finite")
            # repr() round-trips the shortest decimal form of the double.
            price = Decimal(repr(raw_price))
        else:
            price = Decimal(raw_price).scaleb(-layout.price_decimals)
        if not Decimal("0") <= price <= Decimal("1"):
            raise DecodeError(f"price {price} outside [0, 1]")

        position = layout.market_account_position
        if position >= len(instruction.accounts):
            raise DecodeError(f"no account reference at position {position}")
        market = _account(account_keys, instruction.accounts[position])
        if market is None:
            raise DecodeError(f"account index {instruction.accounts[position]} out of range")

        return DecodedInstruction(
            program_id=self.program_id,
            market_account=market,
            outcome_index=int(outcome_index),
            for_outcome=flag == 1,
            stake=stake,
            expected_price=price,
        )


class DecoderRegistry:
    """Routes instructions to the decoder registered for their program id."""

    def __init__(self, decoders: Mapping[str, InstructionDecoder] | None = None) -> None:
        self._decoders: dict[str, InstructionDecoder] = dict(decoders or {})

    def register(self, decoder: InstructionDecoder) -> None:
        self._decoders[decoder.program_id] = decoder

    def __contains__(self, program_id: str) -> bool:
        return program_id in self._decoders

    def __len__(self) -> int:
        return len(self._decoders)

    def decode_transaction(self, tx: RawTransaction) -> DecodedInstruction | None:
        for position, ix in enumerate(tx.instructions):
            decoder = self._decoders.get(ix.program_id)
            if decoder is None:
                continue
            try:
                return decoder.decode(ix, tx.account_keys)
            except DecodeError as exc:
                logger.debug("Skipping instruction %d of %s: %s", position, tx.signature, exc)
        return None

    @classmethod
    def from_layouts(cls, layouts: Mapping[str, InstructionLayout]) -> DecoderRegistry:
        return cls({pid: LayoutInstructionDecoder(pid, layout) for pid, layout in layouts.items()})


def _read(data: bytes, fmt: str, offset: int) -> Any:
    try:
        return struct.unpack_from(fmt, data, offset)[0]
    except struct.error as exc:
        raise DecodeError(f"payload too short for {fmt} at offset {offset}") from exc


def _account(keys: tuple[str, ...], index: int) -> str | None:
    if 0 <= index < len(keys):
        return keys[index]
    return None
