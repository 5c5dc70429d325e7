from __future__ import annotations

from collections.abc import Iterable

from .types import RawTransaction


class TransactionClassifier:
    """Flags transactions that touch one of the supported market programs.

    Presence of a program id anywhere in the account list is enough; matching
    the actual order instruction is the decoder's job.
    """

    def __init__(self, program_ids: Iterable[str]) -> None:
        self.program_ids = frozenset(p.strip() for p in program_ids if p and p.strip())

    def is_candidate(self, tx: RawTransaction) -> bool:
        if not self.program_ids:
            return False
        if any(key in self.program_ids for key in tx.account_keys):
            return True
        return any(ix.program_id in self.program_ids for ix in tx.instructions)

    def matching_programs(self, tx: RawTransaction) -> set[str]:
        found = {key for key in tx.account_keys if key in self.program_ids}
        found.update(ix.program_id for ix in tx.instructions if ix.program_id in self.program_ids)
        return found
