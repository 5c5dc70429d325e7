import asyncio
import json

import base58
import httpx
import pytest

from pm_copy_trader.ledger import LedgerError, SolanaLedgerReader, parse_transaction

PROGRAM = "monacoUXKtUi6vKsQwaLyxmXKSievfNWEcYXTgkbCih"


def test_parse_transaction_with_index_references() -> None:
    result = {
        "blockTime": 1730000000,
        "meta": {"err": None, "loadedAddresses": {"writable": ["LoadedW"], "readonly": ["LoadedR"]}},
        "transaction": {
            "message": {
                "accountKeys": ["Wallet111", "Market111", PROGRAM],
                "instructions": [
                    {"programIdIndex": 2, "accounts": [1, 3, 4], "data": base58.b58encode(b"\x01\x02").decode()}
                ],
            }
        },
    }
    tx = parse_transaction("sig", result)

    assert tx.account_keys == ("Wallet111", "Market111", PROGRAM, "LoadedW", "LoadedR")
    assert len(tx.instructions) == 1
    ix = tx.instructions[0]
    assert ix.program_id == PROGRAM
    assert ix.accounts == (1, 3, 4)
    assert ix.data == b"\x01\x02"
    assert tx.failed is False
    assert tx.block_time == 1730000000


def test_parse_transaction_with_parsed_key_objects() -> None:
    result = {
        "meta": {"err": {"InstructionError": [0, "Custom"]}},
        "transaction": {
            "message": {
                "accountKeys": [{"pubkey": "Wallet111", "signer": True}, {"pubkey": "Market111"}],
                "instructions": [
                    {"programId": PROGRAM, "accounts": ["Market111", "Wallet111"], "data": ""}
                ],
            }
        },
    }
    tx = parse_transaction("sig", result)

    assert tx.account_keys == ("Wallet111", "Market111")
    assert tx.instructions[0].program_id == PROGRAM
    assert tx.instructions[0].accounts == (1, 0)
    assert tx.instructions[0].data == b""
    assert tx.failed is True


def test_parse_transaction_skips_unresolvable_program() -> None:
    result = {"transaction": {"message": {"accountKeys": ["a"], "instructions": [{"programIdIndex": 9}]}}}
    assert parse_transaction("sig", result).instructions == ()


def _reader(handler) -> SolanaLedgerReader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SolanaLedgerReader("https://rpc.example", client=client)


def test_list_signatures_calls_rpc() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["method"] == "getSignaturesForAddress"
        assert body["params"][0] == "Watched111"
        assert body["params"][1]["limit"] == 5
        return httpx.Response(
            200,
            json={
                "jsonrpc": "2.0",
                "id": body["id"],
                "result": [
                    {"signature": "s2", "slot": 11, "err": None},
                    {"signature": "s1", "slot": 10, "err": {"InstructionError": []}},
                ],
            },
        )

    infos = asyncio.run(_reader(handler).list_signatures("Watched111", 5))
    assert [i.signature for i in infos] == ["s2", "s1"]
    assert [i.failed for i in infos] == [False, True]


def test_get_transaction_absent_returns_none() -> None:
    reader = _reader(lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None}))
    assert asyncio.run(reader.get_transaction("missing")) is None


def test_rpc_error_raises_ledger_error() -> None:
    reader = _reader(
        lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "busy"}})
    )
    with pytest.raises(LedgerError, match="busy"):
        asyncio.run(reader.list_signatures("Watched111", 10))


def test_http_error_raises_ledger_error() -> None:
    reader = _reader(lambda request: httpx.Response(503))
    with pytest.raises(LedgerError):
        asyncio.run(reader.get_transaction("sig"))
