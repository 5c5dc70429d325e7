from __future__ import annotations

from .types import Action, DecodedInstruction, Outcome, ParsedTrade


def canonical_side(for_outcome: bool) -> tuple[Outcome, Action]:
    # Backing an outcome buys YES exposure; laying it sells YES, i.e. holds NO.
    if for_outcome:
        return Outcome.YES, Action.BUY
    return Outcome.NO, Action.SELL


def normalize_trade(
    decoded: DecodedInstruction,
    source_signature: str | None = None,
    source_address: str | None = None,
) -> ParsedTrade:
    outcome, action = canonical_side(decoded.for_outcome)
    return ParsedTrade(
        market_address=decoded.market_account,
        outcome=outcome,
        action=action,
        amount=decoded.stake,
        price=decoded.expected_price,
        outcome_index=decoded.outcome_index,
        source_signature=source_signature,
        source_address=source_address,
    )
