from __future__ import annotations

import base64
import itertools
import logging
from typing import Any, Protocol

import base58
import httpx

from .types import Instruction, RawTransaction, SignatureInfo

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Ledger query failed (transport, HTTP status or JSON-RPC error)."""


class LedgerReader(Protocol):
    async def list_signatures(self, address: str, limit: int) -> list[SignatureInfo]: ...

    async def get_transaction(self, signature: str) -> RawTransaction | None: ...


class SolanaLedgerReader:
    """Read-only Solana JSON-RPC client."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        commitment: str = "confirmed",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def list_signatures(self, address: str, limit: int) -> list[SignatureInfo]:
        result = await self._call(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        if not isinstance(result, list):
            raise LedgerError(f"Unexpected getSignaturesForAddress result: {result!r}")
        return [parse_signature_info(item) for item in result if isinstance(item, dict)]

    async def get_transaction(self, signature: str) -> RawTransaction | None:
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None
        return parse_transaction(signature, result)

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LedgerError(f"{method} failed: {exc}") from exc

        if not isinstance(data, dict):
            raise LedgerError(f"{method} returned a non-object response")
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise LedgerError(f"{method} RPC error: {message}")
        return data.get("result")


def parse_signature_info(item: dict[str, Any]) -> SignatureInfo:
    return SignatureInfo(
        signature=str(item["signature"]),
        slot=int(item.get("slot") or 0),
        failed=item.get("err") is not None,
        block_time=item.get("blockTime"),
    )


def parse_transaction(signature: str, result: dict[str, Any]) -> RawTransaction:
    """Normalize a getTransaction result into a RawTransaction.

    Handles both shapes the RPC returns: account keys as plain strings or as
    ``{"pubkey": ...}`` objects, and instruction programs given either as
    ``programIdIndex`` or as ``programId``. Instruction account references are
    always turned into indices into ``account_keys``. Keys loaded from address
    lookup tables are appended after the static keys, writable first, which is
    the order the runtime indexes them in.
    """
    tx = result.get("transaction") or {}
    message = tx.get("message") or {}
    meta = result.get("meta") or {}

    keys = [_key_to_str(k) for k in message.get("accountKeys") or []]
    loaded = meta.get("loadedAddresses") or {}
    keys.extend(str(k) for k in loaded.get("writable") or [])
    keys.extend(str(k) for k in loaded.get("readonly") or [])

    instructions: list[Instruction] = []
    for raw_ix in message.get("instructions") or []:
        if not isinstance(raw_ix, dict):
            continue
        program_id = _resolve_program_id(raw_ix, keys)
        if program_id is None:
            continue
        accounts = tuple(_account_index(ref, keys) for ref in raw_ix.get("accounts") or [])
        instructions.append(
            Instruction(program_id=program_id, accounts=accounts, data=_decode_data(raw_ix.get("data")))
        )

    return RawTransaction(
        signature=signature,
        account_keys=tuple(keys),
        instructions=tuple(instructions),
        failed=meta.get("err") is not None,
        block_time=result.get("blockTime"),
    )


def _key_to_str(key: Any) -> str:
    if isinstance(key, dict):
        return str(key.get("pubkey", ""))
    return str(key)


def _resolve_program_id(raw_ix: dict[str, Any], keys: list[str]) -> str | None:
    program_id = raw_ix.get("programId")
    if program_id:
        return str(program_id)
    index = raw_ix.get("programIdIndex")
    if isinstance(index, int) and 0 <= index < len(keys):
        return keys[index]
    return None


def _account_index(ref: Any, keys: list[str]) -> int:
    if isinstance(ref, int):
        return ref
    text = _key_to_str(ref)
    try:
        return keys.index(text)
    except ValueError:
        keys.append(text)
        return len(keys) - 1


def _decode_data(raw: Any) -> bytes:
    if not raw:
        return b""
    if isinstance(raw, list) and len(raw) == 2 and raw[1] == "base64":
        return base64.b64decode(raw[0])
    try:
        return base58.b58decode(str(raw))
    except ValueError:
        logger.debug("Instruction data is not base58: %r", raw)
        return b""
