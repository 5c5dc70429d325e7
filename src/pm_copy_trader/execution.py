from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx

from .types import Action, Outcome, ParsedTrade

logger = logging.getLogger(__name__)

BUY_TOLERANCE = Decimal("1.01")
SELL_TOLERANCE = Decimal("0.99")
DEFAULT_PRICE_CEILING = Decimal("0.99")
DEFAULT_PRICE_FLOOR = Decimal("0.01")


class ExecutionError(Exception):
    """The order was not accepted for submission."""


class PriceBandError(Exception):
    """The price band cannot reach the source price, so the copy would not fill."""


class ExecutionAdapter(Protocol):
    async def place_order(
        self,
        market: str,
        outcome_index: int,
        for_outcome: bool,
        stake: Decimal,
        expected_price: Decimal,
    ) -> str: ...


@dataclass(frozen=True)
class OrderShape:
    name: str
    for_outcome: bool


# Buying YES backs the outcome; buying NO or selling either side lays it.
# The normalized lay (SELL, NO) therefore stays a lay when copied.
ORDER_SHAPES: dict[tuple[Action, Outcome], OrderShape] = {
    (Action.BUY, Outcome.YES): OrderShape("buy-YES", True),
    (Action.BUY, Outcome.NO): OrderShape("buy-NO", False),
    (Action.SELL, Outcome.YES): OrderShape("sell-YES", False),
    (Action.SELL, Outcome.NO): OrderShape("sell-NO", False),
}


@dataclass(frozen=True)
class DispatchResult:
    signature: str
    shape: str
    stake: Decimal
    limit_price: Decimal


class ExecutionDispatcher:
    def __init__(
        self,
        adapter: ExecutionAdapter,
        price_floor: Decimal = DEFAULT_PRICE_FLOOR,
        price_ceiling: Decimal = DEFAULT_PRICE_CEILING,
    ) -> None:
        if not Decimal("0") < price_floor < price_ceiling <= Decimal("1"):
            raise ValueError("price band must satisfy 0 < floor < ceiling <= 1")
        self.adapter = adapter
        self.price_floor = price_floor
        self.price_ceiling = price_ceiling

    def limit_price(self, action: Action, price: Decimal | None) -> Decimal:
        if action is Action.BUY:
            limit = price * BUY_TOLERANCE if price is not None else self.price_ceiling
        else:
            limit = price * SELL_TOLERANCE if price is not None else self.price_floor
        return min(max(limit, self.price_floor), self.price_ceiling)

    async def dispatch(self, trade: ParsedTrade, adjusted_amount: Decimal) -> DispatchResult:
        shape = ORDER_SHAPES[(trade.action, trade.outcome)]
        limit = self.limit_price(trade.action, trade.price)
        if trade.price is not None:
            if trade.action is Action.BUY and limit < trade.price:
                raise PriceBandError(f"buy limit {limit} is below source price {trade.price}")
            if trade.action is Action.SELL and limit > trade.price:
                raise PriceBandError(f"sell limit {limit} is above source price {trade.price}")
        logger.info(
            "Placing %s market=%s outcome_index=%d stake=%s limit=%s",
            shape.name,
            trade.market_address,
            trade.outcome_index,
            adjusted_amount,
            limit,
        )
        signature = await self.adapter.place_order(
            trade.market_address,
            trade.outcome_index,
            shape.for_outcome,
            adjusted_amount,
            limit,
        )
        return DispatchResult(signature=signature, shape=shape.name, stake=adjusted_amount, limit_price=limit)


class HttpExecutionAdapter:
    """Submits orders to an order relay that holds the executing account's keys."""

    def __init__(self, relay_url: str, token: str, timeout: float = 15.0, client: httpx.AsyncClient | None = None) -> None:
        self.relay_url = relay_url
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers={"Authorization": f"Bearer {token}"}
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def place_order(
        self,
        market: str,
        outcome_index: int,
        for_outcome: bool,
        stake: Decimal,
        expected_price: Decimal,
    ) -> str:
        # No retry: a timed out submission may still have landed.
        try:
            response = await self._client.post(
                self.relay_url,
                json={
                    "market": market,
                    "outcomeIndex": outcome_index,
                    "forOutcome": for_outcome,
                    "stake": str(stake),
                    "expectedPrice": str(expected_price),
                },
            )
        except httpx.HTTPError as exc:
            raise ExecutionError(f"Order relay request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ExecutionError(f"Order relay rejected order ({response.status_code}): {response.text}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ExecutionError("Order relay returned invalid JSON") from exc

        signature = None
        if isinstance(data, dict):
            signature = data.get("signature") or data.get("tnxSignature")
        if not signature:
            raise ExecutionError(f"Order relay reply has no signature: {data}")
        return str(signature)


class DryRunExecutionAdapter:
    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self.orders: list[tuple[str, int, bool, Decimal, Decimal]] = []

    async def close(self) -> None:
        return None

    async def place_order(
        self,
        market: str,
        outcome_index: int,
        for_outcome: bool,
        stake: Decimal,
        expected_price: Decimal,
    ) -> str:
        self.orders.append((market, outcome_index, for_outcome, stake, expected_price))
        signature = f"dry-run-{next(self._counter)}"
        logger.info(
            "[dry-run] %s order market=%s outcome_index=%d stake=%s price=%s",
            "back" if for_outcome else "lay",
            market,
            outcome_index,
            stake,
            expected_price,
        )
        return signature
