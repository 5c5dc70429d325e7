from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import date

from .classifier import TransactionClassifier
from .config import ConfigError, Settings
from .cursor import SignatureCursor
from .decoder import DecoderRegistry
from .execution import (
    DispatchResult,
    DryRunExecutionAdapter,
    ExecutionAdapter,
    ExecutionDispatcher,
    ExecutionError,
    HttpExecutionAdapter,
    PriceBandError,
)
from .formatting import block_time_iso, build_tx_link, describe_trade, short_address
from .ledger import LedgerError, LedgerReader, SolanaLedgerReader
from .normalizer import normalize_trade
from .risk import RiskGate
from .types import RawTransaction, RiskState

logger = logging.getLogger(__name__)

MAX_TRANSACTION_MISSES = 3


@dataclass
class Metrics:
    cycles: int = 0
    signatures_seen: int = 0
    candidates: int = 0
    trades_decoded: int = 0
    risk_denied: int = 0
    orders_sent: int = 0
    orders_failed: int = 0
    errors: int = 0


class CopyTradeService:
    """Polls watched addresses and mirrors their prediction-market orders.

    All mutable pipeline state (the signature cursor and the risk state) is
    owned by this object and only touched from the task running ``run``.
    Addresses are handled one after another; within an address the fetched
    signatures are replayed oldest first.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: LedgerReader | None = None,
        adapter: ExecutionAdapter | None = None,
    ) -> None:
        self.settings = settings
        self.metrics = Metrics()
        self.ledger = ledger or SolanaLedgerReader(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
        self.adapter = adapter or _build_adapter(settings)
        self.cursor = SignatureCursor(settings.seen_cache_size)
        self.classifier = TransactionClassifier(settings.program_ids)
        self.decoders = DecoderRegistry.from_layouts(settings.decoder_layouts)
        self.risk = RiskGate(
            max_position_size=settings.max_position_size,
            max_daily_loss=settings.max_daily_loss,
            copy_multiplier=settings.copy_multiplier,
        )
        self.risk_state = RiskState()
        self.dispatcher = ExecutionDispatcher(self.adapter)
        self.recent_executions: deque[DispatchResult] = deque(maxlen=100)
        self._misses: dict[tuple[str, str], int] = {}
        self._stop = asyncio.Event()

    def stop(self) -> None:
        if not self._stop.is_set():
            logger.info("Stop requested")
        self._stop.set()

    async def run(self) -> None:
        if not self.settings.target_addresses:
            logger.warning("No target addresses configured. Set TARGET_ADDRESSES in .env")
        logger.info(
            "Copy trader started addresses=%d programs=%s multiplier=%s dry_run=%s",
            len(self.settings.target_addresses),
            ",".join(self.settings.program_ids),
            self.settings.copy_multiplier,
            self.settings.dry_run,
        )

        health_task = asyncio.create_task(self._health_loop())
        try:
            while not self._stop.is_set():
                try:
                    await self.run_cycle()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.metrics.errors += 1
                    logger.exception("Poll cycle failed")
                await self._sleep(self.settings.poll_interval_seconds)
        finally:
            health_task.cancel()
            await asyncio.gather(health_task, return_exceptions=True)
            await _close(self.ledger)
            await _close(self.adapter)
            logger.info("Copy trader stopped")

    async def run_cycle(self, today: date | None = None) -> None:
        self.metrics.cycles += 1
        self.risk.roll_over(self.risk_state, today)

        if self.risk.loss_limit_reached(self.risk_state):
            logger.warning(
                "Daily loss limit reached (%s >= %s), skipping cycle",
                self.risk_state.daily_loss,
                self.settings.max_daily_loss,
            )
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.cycle_timeout_seconds

        for address in self.settings.target_addresses:
            if self._stop.is_set():
                break
            if loop.time() >= deadline:
                logger.warning("Cycle deadline exceeded before %s, deferring to next cycle", short_address(address))
                break
            try:
                halted = await self._process_address(address, deadline)
            except asyncio.CancelledError:
                raise
            except LedgerError as exc:
                self.metrics.errors += 1
                logger.warning("Ledger query failed for %s: %s", short_address(address), exc)
                continue
            except Exception:
                self.metrics.errors += 1
                logger.exception("Error monitoring address %s", address)
                continue
            if halted:
                logger.warning("Daily loss limit reached, no further addresses this cycle")
                break

    async def _process_address(self, address: str, deadline: float) -> bool:
        loop = asyncio.get_running_loop()
        signatures = await self.ledger.list_signatures(address, self.settings.signature_lookback)

        # The ledger returns newest first; replay in chronological order.
        for info in reversed(signatures):
            if self.cursor.seen(address, info.signature):
                continue
            if loop.time() >= deadline:
                logger.warning("Cycle deadline exceeded while scanning %s", short_address(address))
                return False

            self.metrics.signatures_seen += 1
            if info.failed:
                self.cursor.mark_seen(address, info.signature)
                continue

            tx = await self.ledger.get_transaction(info.signature)
            if tx is None:
                self._record_miss(address, info.signature)
                continue
            self._misses.pop((address, info.signature), None)
            if not self.cursor.claim(address, info.signature):
                continue
            if tx.failed:
                continue

            if await self._handle_transaction(address, tx):
                return True
        return False

    async def _handle_transaction(self, address: str, tx: RawTransaction) -> bool:
        """Decode, gate and dispatch one source transaction.

        Returns True when the daily loss cap stops the rest of the cycle.
        """
        if not self.classifier.is_candidate(tx):
            return False
        self.metrics.candidates += 1
        logger.info(
            "Found prediction market transaction %s at %s (programs=%s)",
            tx.signature,
            block_time_iso(tx.block_time),
            ",".join(sorted(self.classifier.matching_programs(tx))),
        )

        decoded = self.decoders.decode_transaction(tx)
        if decoded is None:
            logger.info("Could not parse trade from %s", tx.signature)
            return False

        trade = normalize_trade(decoded, source_signature=tx.signature, source_address=address)
        self.metrics.trades_decoded += 1
        logger.info("Trade from %s: %s", short_address(address), describe_trade(trade))

        decision = self.risk.admit(trade, self.risk_state)
        if not decision.allowed:
            self.metrics.risk_denied += 1
            logger.info(
                "Skipping %s: %s (adjusted=%s max=%s)",
                tx.signature,
                decision.reason.value if decision.reason else "denied",
                decision.adjusted_amount,
                self.settings.max_position_size,
            )
            return decision.halts_cycle

        try:
            result = await self.dispatcher.dispatch(trade, decision.adjusted_amount)
        except PriceBandError as exc:
            self.metrics.risk_denied += 1
            logger.info("Skipping %s: %s", tx.signature, exc)
            return False
        except ExecutionError as exc:
            self.metrics.orders_failed += 1
            self.risk.record_loss(self.risk_state, decision.adjusted_amount)
            logger.warning("Copy of %s not executed: %s", tx.signature, exc)
            return False

        self.metrics.orders_sent += 1
        self.recent_executions.append(result)
        logger.info(
            "Copy trade submitted source=%s replica=%s link=%s",
            tx.signature,
            result.signature,
            build_tx_link(result.signature) or "n/a",
        )
        return False

    def _record_miss(self, address: str, signature: str) -> None:
        key = (address, signature)
        misses = self._misses.get(key, 0) + 1
        if misses < MAX_TRANSACTION_MISSES:
            self._misses[key] = misses
            logger.debug("Transaction %s not available yet (%d/%d)", signature, misses, MAX_TRANSACTION_MISSES)
            return
        self._misses.pop(key, None)
        self.cursor.mark_seen(address, signature)
        logger.warning("Transaction %s still unavailable after %d attempts, giving up", signature, misses)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.health_log_interval_seconds)
            logger.info(
                (
                    "health cycles=%d signatures=%d candidates=%d decoded=%d "
                    "denied=%d sent=%d failed=%d errors=%d daily_loss=%s seen=%d"
                ),
                self.metrics.cycles,
                self.metrics.signatures_seen,
                self.metrics.candidates,
                self.metrics.trades_decoded,
                self.metrics.risk_denied,
                self.metrics.orders_sent,
                self.metrics.orders_failed,
                self.metrics.errors,
                self.risk_state.daily_loss,
                self.cursor.size(),
            )


def _build_adapter(settings: Settings) -> ExecutionAdapter:
    if settings.dry_run:
        return DryRunExecutionAdapter()
    if not settings.order_relay_url or not settings.order_relay_token:
        raise ConfigError("ORDER_RELAY_URL and ORDER_RELAY_TOKEN are required unless DRY_RUN is set")
    return HttpExecutionAdapter(
        settings.order_relay_url,
        settings.order_relay_token,
        timeout=settings.rpc_timeout_seconds,
    )


async def _close(resource: object) -> None:
    close = getattr(resource, "close", None)
    if close is not None:
        await close()
