"""
Ledger module for persisting per-market reconciliation state.

This module provides the keyed store the reconciliation engine reads and
writes: market id -> MarketRecord, plus the global seeded flag and the
notification destination override. The base Ledger keeps everything in
memory; JsonLedger adds durability as a single JSON document rewritten
wholesale on every persist.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from auracle_bot.config import Config
from auracle_bot.models import MarketRecord, MarketStatus

# Configure module logger
logger = logging.getLogger(__name__)


class LedgerPersistError(Exception):
    """Raised when the ledger cannot be written to durable storage."""


class Ledger:
    """
    In-memory market ledger.

    Provides get/upsert/all plus the seeded flag and target chat override.
    persist() and reload() are no-ops here; subclasses add storage I/O.
    """

    def __init__(self):
        self._records: dict[str, MarketRecord] = {}
        self.seeded: bool = False
        self.target_chat_id: Optional[str] = None

    def get(self, market_id: str) -> Optional[MarketRecord]:
        return self._records.get(market_id)

    def upsert(self, market_id: str, record: MarketRecord) -> None:
        """Store a record, replacing any previous record for the id."""
        self._records[market_id] = record

    def delete(self, market_id: str) -> None:
        self._records.pop(market_id, None)

    def all(self) -> Iterator[tuple[str, MarketRecord]]:
        # Copy so callers may upsert/delete while iterating
        return iter(list(self._records.items()))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, market_id: str) -> bool:
        return market_id in self._records

    def persist(self) -> None:
        pass

    def reload(self) -> None:
        pass

    def compact(self, high_water: int) -> int:
        """
        Drop retired records once the ledger grows past a high-water mark.

        Args:
            high_water: Record count above which retired records are removed

        Returns:
            Number of records dropped
        """
        if len(self._records) <= high_water:
            return 0

        retired = [market_id for market_id, record in self._records.items() if record.retired]
        for market_id in retired:
            del self._records[market_id]

        if retired:
            logger.info(f"Compacted ledger: dropped {len(retired)} retired records, {len(self._records)} remain")
        return len(retired)

    def summary(self) -> dict:
        """
        Count records by status and announcement flags.

        Returns:
            Dictionary with total/open/closed/resolved/retired counts,
            announced counts, seeded flag and target chat override
        """
        records = list(self._records.values())
        return {
            "total": len(records),
            "open": sum(1 for r in records if r.status == MarketStatus.OPEN),
            "closed": sum(1 for r in records if r.status == MarketStatus.CLOSED),
            "resolved": sum(1 for r in records if r.status == MarketStatus.RESOLVED),
            "retired": sum(1 for r in records if r.retired),
            "announced_open": sum(1 for r in records if r.announced_open),
            "announced_closed": sum(1 for r in records if r.announced_closed),
            "announced_resolved": sum(1 for r in records if r.announced_resolved),
            "seeded": self.seeded,
            "target_chat_id": self.target_chat_id,
        }

    def to_document(self) -> dict:
        """Full ledger as the persisted JSON document."""
        return {
            "markets": {market_id: record.to_dict() for market_id, record in self._records.items()},
            "seeded": self.seeded,
            "target_chat_id": self.target_chat_id,
        }

    def load_document(self, document: dict) -> None:
        """Replace the ledger contents with a persisted document."""
        records: dict[str, MarketRecord] = {}
        for market_id, data in (document.get("markets") or {}).items():
            if not isinstance(data, dict):
                logger.warning(f"Skipping malformed ledger entry for {market_id}")
                continue
            try:
                records[str(market_id)] = MarketRecord.from_dict(str(market_id), data)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable ledger entry for {market_id}: {e}")

        self._records = records
        self.seeded = bool(document.get("seeded", False))
        chat_id = document.get("target_chat_id", document.get("targetChatId"))
        self.target_chat_id = str(chat_id) if chat_id else None


class JsonLedger(Ledger):
    """
    Ledger backed by a single JSON file.

    Every persist() rewrites the whole document through a temporary file in
    the same directory followed by an atomic rename.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize the ledger and load any existing state.

        Args:
            path: Path to the state file. If None, uses Config.STATE_PATH
        """
        super().__init__()
        self.path = Path(path or Config.STATE_PATH)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.reload()

    def reload(self) -> None:
        """
        Load state from disk.

        A missing file starts an empty, unseeded ledger. An unreadable file
        is logged and also starts empty.
        """
        if not self.path.exists():
            logger.info(f"No ledger at {self.path}, starting empty")
            self.load_document({})
            return

        try:
            with self.path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read ledger at {self.path}: {e}. Starting empty")
            self.load_document({})
            return

        if not isinstance(document, dict):
            logger.warning(f"Ledger at {self.path} is not a JSON object. Starting empty")
            document = {}

        self.load_document(document)
        logger.info(f"Loaded ledger from {self.path}: {len(self)} markets, seeded={self.seeded}")

    def persist(self) -> None:
        """
        Write the full ledger to disk.

        Raises:
            LedgerPersistError: If the document cannot be written
        """
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_document(), f, indent=2)
            os.replace(tmp_name, self.path)
            tmp_name = None
            logger.debug(f"Persisted ledger with {len(self)} markets to {self.path}")

        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist ledger to {self.path}: {e}", exc_info=True)
            raise LedgerPersistError(str(e)) from e

        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
