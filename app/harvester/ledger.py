"""Fingerprint ledger of identity keys ingested during a harvest run."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from . import db
from .logging_utils import _harvest_event


class FingerprintLedger:
    """Monotonically growing set of identity keys with first-seen page markers.

    The ledger never evicts: its size is the number of distinct records the
    run has ingested. Keys added since the last :meth:`drain_pending` call are
    tracked so they can be persisted alongside the checkpoint.
    """

    def __init__(self, entries: Optional[Dict[str, Optional[int]]] = None) -> None:
        self._first_seen: Dict[str, Optional[int]] = dict(entries or {})
        self._pending: List[Tuple[str, Optional[int]]] = []

    def __len__(self) -> int:
        return len(self._first_seen)

    def __contains__(self, key: object) -> bool:
        return key in self._first_seen

    def contains(self, key: str) -> bool:
        return key in self._first_seen

    def add(self, key: str, page_index: Optional[int] = None) -> bool:
        """Add ``key``; returns ``True`` when the key was new. Re-adding is a no-op."""

        if key in self._first_seen:
            return False
        self._first_seen[key] = page_index
        self._pending.append((key, page_index))
        return True

    def first_seen(self, key: str) -> Optional[int]:
        return self._first_seen.get(key)

    def overlap_ratio(self, keys: Iterable[str]) -> float:
        """Fraction of the distinct ``keys`` already present, in ``[0, 1]``.

        An empty key set has no overlap.
        """

        distinct = set(keys)
        if not distinct:
            return 0.0
        seen = sum(1 for key in distinct if key in self._first_seen)
        return seen / len(distinct)

    def keys(self) -> List[str]:
        return list(self._first_seen)

    def drain_pending(self) -> List[Tuple[str, Optional[int]]]:
        pending, self._pending = self._pending, []
        return pending

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, run_key: str) -> "FingerprintLedger":
        """Rebuild the ledger persisted for ``run_key`` (empty when none)."""

        entries = db.load_ledger_keys(run_key)
        _harvest_event("ledger", phase="load", run_key=run_key, keys=len(entries))
        return cls(entries)

    def persist(self, run_key: str) -> int:
        """Append keys added since the last persist to the ledger store."""

        pending = self.drain_pending()
        if pending:
            db.append_ledger_keys(run_key, pending)
        return len(pending)


__all__ = ["FingerprintLedger"]
