from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from .types import ParsedTrade, RiskState

logger = logging.getLogger(__name__)


class DenyReason(str, Enum):
    DAILY_LOSS_EXCEEDED = "DAILY_LOSS_EXCEEDED"
    POSITION_TOO_LARGE = "POSITION_TOO_LARGE"


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    adjusted_amount: Decimal = Decimal("0")
    reason: DenyReason | None = None

    @property
    def halts_cycle(self) -> bool:
        return self.reason is DenyReason.DAILY_LOSS_EXCEEDED


class RiskGate:
    def __init__(
        self,
        max_position_size: Decimal,
        max_daily_loss: Decimal,
        copy_multiplier: Decimal,
    ) -> None:
        self.max_position_size = max_position_size
        self.max_daily_loss = max_daily_loss
        self.copy_multiplier = copy_multiplier

    def roll_over(self, state: RiskState, today: date | None = None) -> bool:
        today = today or date.today()
        if today == state.last_reset_date:
            return False
        state.daily_loss = Decimal("0")
        state.last_reset_date = today
        logger.info("Daily loss counter reset for %s", today.isoformat())
        return True

    def loss_limit_reached(self, state: RiskState) -> bool:
        return state.daily_loss >= self.max_daily_loss

    def admit(self, trade: ParsedTrade, state: RiskState) -> RiskDecision:
        if self.loss_limit_reached(state):
            return RiskDecision(False, reason=DenyReason.DAILY_LOSS_EXCEEDED)

        adjusted = trade.amount * self.copy_multiplier
        if adjusted > self.max_position_size:
            return RiskDecision(False, adjusted, DenyReason.POSITION_TOO_LARGE)

        return RiskDecision(True, adjusted)

    def record_loss(self, state: RiskState, amount: Decimal) -> None:
        if amount <= 0:
            return
        state.daily_loss += amount
        logger.info(
            "Daily loss now %s of %s",
            state.daily_loss,
            self.max_daily_loss,
        )
