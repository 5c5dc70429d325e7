import struct
from decimal import Decimal

import pytest

from pm_copy_trader.decoder import (
    MONACO_CREATE_ORDER_LAYOUT,
    MONACO_PROGRAM_ID,
    DecodeError,
    DecoderRegistry,
    InstructionLayout,
    LayoutInstructionDecoder,
    anchor_discriminator,
)
from pm_copy_trader.types import Instruction, RawTransaction

KEYS = ("Wallet111", "Market111", "Outcome111", MONACO_PROGRAM_ID)


def _payload(outcome_index: int = 0, flag: int = 1, stake: int = 100_000, price: float = 0.5) -> bytes:
    return struct.pack("<8sBBQd", MONACO_CREATE_ORDER_LAYOUT.discriminator, outcome_index, flag, stake, price)


def _ix(data: bytes, accounts=(1, 2, 0), program_id: str = MONACO_PROGRAM_ID) -> Instruction:
    return Instruction(program_id=program_id, accounts=accounts, data=data)


def _decoder() -> LayoutInstructionDecoder:
    return LayoutInstructionDecoder(MONACO_PROGRAM_ID, MONACO_CREATE_ORDER_LAYOUT)


def test_decode_create_order_payload() -> None:
    decoded = _decoder().decode(_ix(_payload(outcome_index=1, flag=0, stake=2_500_000, price=0.37)), KEYS)
    assert decoded.market_account == "Market111"
    assert decoded.outcome_index == 1
    assert decoded.for_outcome is False
    assert decoded.stake == Decimal("2.5")
    assert decoded.expected_price == Decimal("0.37")


def test_decode_rejects_other_discriminator() -> None:
    data = b"\x00" * 8 + _payload()[8:]
    with pytest.raises(DecodeError):
        _decoder().decode(_ix(data), KEYS)


def test_decode_rejects_truncated_payload() -> None:
    with pytest.raises(DecodeError):
        _decoder().decode(_ix(_payload()[:20]), KEYS)


def test_decode_rejects_bad_flag_and_price() -> None:
    with pytest.raises(DecodeError):
        _decoder().decode(_ix(_payload(flag=2)), KEYS)
    with pytest.raises(DecodeError):
        _decoder().decode(_ix(_payload(price=1.5)), KEYS)
    with pytest.raises(DecodeError):
        _decoder().decode(_ix(_payload(price=float("nan"))), KEYS)


def test_decode_fails_without_market_account_reference() -> None:
    with pytest.raises(DecodeError):
        _decoder().decode(_ix(_payload(), accounts=()), KEYS)
    with pytest.raises(DecodeError):
        _decoder().decode(_ix(_payload(), accounts=(42,)), KEYS)


def test_layout_from_dict_with_scaled_price() -> None:
    layout = InstructionLayout.from_dict(
        {
            "instruction": "place_order",
            "outcome_index_offset": 8,
            "outcome_index_type": "u16",
            "for_outcome_offset": 10,
            "stake_offset": 11,
            "stake_decimals": 9,
            "price_offset": 19,
            "price_type": "u64",
            "price_decimals": 4,
            "market_account_position": 1,
        }
    )
    assert layout.discriminator == anchor_discriminator("place_order")

    data = struct.pack("<8sHBQQ", layout.discriminator, 3, 1, 1_500_000_000, 6250)
    decoded = LayoutInstructionDecoder("prog", layout).decode(
        Instruction(program_id="prog", accounts=(0, 2), data=data), ("a", "b", "Market222")
    )
    assert decoded.market_account == "Market222"
    assert decoded.outcome_index == 3
    assert decoded.stake == Decimal("1.5")
    assert decoded.expected_price == Decimal("0.625")


def test_layout_from_dict_requires_offsets() -> None:
    with pytest.raises(ValueError):
        InstructionLayout.from_dict({"discriminator": "00" * 8})
    with pytest.raises(ValueError):
        InstructionLayout.from_dict({"outcome_index_offset": 8})


def test_registry_skips_undecodable_instructions() -> None:
    registry = DecoderRegistry.from_layouts({MONACO_PROGRAM_ID: MONACO_CREATE_ORDER_LAYOUT})
    tx = RawTransaction(
        signature="sig",
        account_keys=KEYS,
        instructions=(
            _ix(b"\x01\x02", program_id="ComputeBudget111111111111111111111111111111"),
            _ix(b"\xff" * 26),
            _ix(_payload(stake=100_000)),
        ),
    )
    decoded = registry.decode_transaction(tx)
    assert decoded is not None
    assert decoded.stake == Decimal("0.1")


def test_registry_returns_none_when_nothing_decodes() -> None:
    registry = DecoderRegistry.from_layouts({MONACO_PROGRAM_ID: MONACO_CREATE_ORDER_LAYOUT})
    tx = RawTransaction(signature="sig", account_keys=KEYS, instructions=(_ix(b"junk"),))
    assert registry.decode_transaction(tx) is None
    assert MONACO_PROGRAM_ID in registry
    assert len(registry) == 1
