from __future__ import annotations

from collections import OrderedDict


class SignatureCursor:
    """Per-address record of source signatures that have already been handled.

    Each address keeps at most ``max_per_address`` signatures; the least
    recently touched one is evicted first. The cap must stay above the ledger
    lookback limit, otherwise a signature could be forgotten while it is still
    returned by the signature query.
    """

    def __init__(self, max_per_address: int = 1000) -> None:
        if max_per_address <= 0:
            raise ValueError("max_per_address must be positive")
        self.max_per_address = max_per_address
        self._seen: dict[str, OrderedDict[str, None]] = {}

    def seen(self, address: str, signature: str) -> bool:
        entries = self._seen.get(address)
        if entries is None or signature not in entries:
            return False
        entries.move_to_end(signature)
        return True

    def mark_seen(self, address: str, signature: str) -> None:
        entries = self._seen.setdefault(address, OrderedDict())
        entries[signature] = None
        entries.move_to_end(signature)
        while len(entries) > self.max_per_address:
            entries.popitem(last=False)

    def claim(self, address: str, signature: str) -> bool:
        # No await between the check and the mark: first caller wins.
        if self.seen(address, signature):
            return False
        self.mark_seen(address, signature)
        return True

    def size(self, address: str | None = None) -> int:
        if address is not None:
            return len(self._seen.get(address, ()))
        return sum(len(entries) for entries in self._seen.values())
