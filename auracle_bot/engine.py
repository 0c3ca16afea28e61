"""
Reconciliation engine for market lifecycle announcements.

One call to ReconciliationEngine.run_tick() is one poll cycle:

1. Compute the watch-set (listed markets plus every known, non-retired one)
2. Fetch a detail snapshot per watched market
3. Seed the ledger silently on the very first tick
4. Per market, detect open/closed/resolved/trending transitions and announce
   each one at most once
5. Track how long known markets have been missing from the lists
6. Persist the ledger and compact it when it grows too large

Scrapes are unreliable, so every field except id/url/status is treated as
optional and filled from the list card or from remembered state.
"""

import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from auracle_bot.config import Config
from auracle_bot.ledger import Ledger
from auracle_bot.models import (
    Announcement,
    AnnouncementKind,
    ClosedSnapshot,
    LastSeen,
    ListResult,
    MarketRecord,
    MarketStatus,
    MarketSummary,
    Option,
    Snapshot,
)
from auracle_bot.options import normalize_options, resolve_winner
from auracle_bot.telegram_notifier import (
    format_closed,
    format_new_market,
    format_resolved,
    format_trending,
)
from auracle_bot.utils import current_utc_timestamp

# Configure module logger
logger = logging.getLogger(__name__)

SnapshotSource = Callable[[str], Optional[Snapshot]]
Notify = Callable[[Optional[str], str], Any]


@dataclass
class TickResult:
    """
    Outcome of one reconciliation tick.

    Attributes:
        watched: Number of markets in the watch-set
        snapshots: Number of usable snapshots collected
        skipped: Market ids whose snapshot failed or was unusable
        announcements: Announcements fired, in firing order
        seeded_now: True if this tick performed the silent cold-start seed
        compacted: Number of retired records dropped
    """
    watched: int = 0
    snapshots: int = 0
    skipped: list[str] = field(default_factory=list)
    announcements: list[Announcement] = field(default_factory=list)
    seeded_now: bool = False
    compacted: int = 0


def infer_closed_from_absence(status: str, missing_count: int, threshold: int) -> str:
    """
    Treat an open read of a market that vanished from the lists as closed.

    The detail page can keep saying "open" after betting has stopped; the
    market dropping off the public lists is the stronger signal. Disabled
    when threshold is 0.

    Args:
        status: Status read from the detail page
        missing_count: Consecutive ticks the market was absent from both lists
        threshold: Absent ticks required before inferring closure

    Returns:
        The status to use for this tick
    """
    if threshold > 0 and status == MarketStatus.OPEN and missing_count >= threshold:
        return MarketStatus.CLOSED
    return status


def _index(summaries: list[MarketSummary]) -> dict[str, MarketSummary]:
    indexed: dict[str, MarketSummary] = {}
    for summary in summaries:
        if summary.id and summary.id not in indexed:
            indexed[summary.id] = summary
    return indexed


def _first_options(*candidates: Optional[list[Option]]) -> list[Option]:
    for options in candidates:
        if options:
            return [Option(label=o.label, pct=o.pct) for o in options]
    return []


class ReconciliationEngine:
    """
    Reconciles scraped snapshots against the ledger and fires announcements.

    The engine is single-threaded with respect to the ledger: snapshots may
    be fetched on a small worker pool, but every ledger mutation happens on
    the calling thread after all fetches for the tick are collected.
    """

    def __init__(
        self,
        ledger: Ledger,
        fetch_detail: SnapshotSource,
        notify: Notify,
        base_url: Optional[str] = None,
        default_chat_id: Optional[str] = None,
        high_water: Optional[int] = None,
        missing_close_threshold: Optional[int] = None,
        fetch_timeout: Optional[float] = None,
        fetch_workers: Optional[int] = None
    ):
        """
        Initialize the engine.

        Args:
            ledger: Market ledger to read and update
            fetch_detail: Snapshot source, url -> Snapshot or None
            notify: Notifier, (destination_id, message) -> anything
            base_url: Site root for fallback detail URLs. If None, uses Config.AURACLE_BASE_URL
            default_chat_id: Destination when the ledger has no override. If None, uses Config.TELEGRAM_CHAT_ID
            high_water: Ledger size that triggers compaction. If None, uses Config.LEDGER_HIGH_WATER
            missing_close_threshold: Absent ticks before inferring closure (0 disables).
                If None, uses Config.CLOSE_AFTER_MISSING_TICKS
            fetch_timeout: Seconds to wait for one snapshot. If None, uses Config.FETCH_TIMEOUT
            fetch_workers: Concurrent snapshot fetches. If None, uses Config.FETCH_WORKERS
        """
        self.ledger = ledger
        self.fetch_detail = fetch_detail
        self.notify = notify
        self.base_url = (base_url or Config.AURACLE_BASE_URL).rstrip("/")
        self.default_chat_id = default_chat_id if default_chat_id is not None else Config.TELEGRAM_CHAT_ID
        self.high_water = high_water if high_water is not None else Config.LEDGER_HIGH_WATER
        self.missing_close_threshold = (
            missing_close_threshold if missing_close_threshold is not None
            else Config.CLOSE_AFTER_MISSING_TICKS
        )
        self.fetch_timeout = fetch_timeout if fetch_timeout is not None else Config.FETCH_TIMEOUT
        self.fetch_workers = max(1, fetch_workers if fetch_workers is not None else Config.FETCH_WORKERS)

    # Watch-set and snapshot acquisition

    def compute_watch_set(
        self,
        active: dict[str, MarketSummary],
        trending: dict[str, MarketSummary]
    ) -> list[str]:
        """
        Ids to check this tick: listed markets plus known ones, minus retired.

        Args:
            active: Active list entries by id
            trending: Trending list entries by id

        Returns:
            Ordered, de-duplicated list of market ids
        """
        watch: dict[str, None] = {}
        for market_id in list(active) + list(trending) + [market_id for market_id, _ in self.ledger.all()]:
            record = self.ledger.get(market_id)
            if record is not None and record.retired:
                continue
            watch[market_id] = None
        return list(watch)

    def resolve_url(
        self,
        market_id: str,
        active: dict[str, MarketSummary],
        trending: dict[str, MarketSummary]
    ) -> str:
        """Detail URL: remembered > active card > trending card > built from id."""
        record = self.ledger.get(market_id)
        if record is not None and record.url:
            return record.url
        if market_id in active and active[market_id].url:
            return active[market_id].url
        if market_id in trending and trending[market_id].url:
            return trending[market_id].url
        return f"{self.base_url}/MarketDetails?id={market_id}"

    def _acquire_snapshots(
        self,
        watch: list[str],
        active: dict[str, MarketSummary],
        trending: dict[str, MarketSummary],
        result: TickResult
    ) -> dict[str, Snapshot]:
        """
        Fetch snapshots with at most fetch_workers in flight.

        Each fetch gets fetch_timeout seconds from the moment it is started.
        A fetch that overruns is abandoned and its slot handed to the next
        market, so a hung page only costs its own market.

        Returns:
            Usable snapshots keyed by market id, in watch-set order
        """
        if not watch:
            return {}

        collected: dict[str, Snapshot] = {}
        failed: set[str] = set()
        queued = deque(watch)
        running: dict[Future, tuple[str, float]] = {}

        # One thread per market so abandoned fetches never block the queue
        executor = ThreadPoolExecutor(max_workers=len(watch), thread_name_prefix="snapshot")
        try:
            while queued or running:
                while queued and len(running) < self.fetch_workers:
                    market_id = queued.popleft()
                    future = executor.submit(self.fetch_detail, self.resolve_url(market_id, active, trending))
                    running[future] = (market_id, time.monotonic())

                next_deadline = min(started for _, started in running.values()) + self.fetch_timeout
                wait(list(running), timeout=max(0.0, next_deadline - time.monotonic()), return_when=FIRST_COMPLETED)

                now = time.monotonic()
                for future, (market_id, started) in list(running.items()):
                    if future.done():
                        del running[future]
                        snapshot = self._usable_snapshot(market_id, future)
                        if snapshot is None:
                            failed.add(market_id)
                        else:
                            collected[market_id] = snapshot
                    elif now - started >= self.fetch_timeout:
                        del running[future]
                        logger.warning(f"Snapshot for {market_id} timed out after {self.fetch_timeout}s, skipping")
                        failed.add(market_id)

        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        result.skipped.extend(market_id for market_id in watch if market_id in failed)
        return {market_id: collected[market_id] for market_id in watch if market_id in collected}

    @staticmethod
    def _usable_snapshot(market_id: str, future: Future) -> Optional[Snapshot]:
        try:
            snapshot = future.result()
        except Exception as e:
            logger.warning(f"Snapshot for {market_id} failed, skipping: {e}")
            return None

        if snapshot is None or not snapshot.id or MarketStatus.rank(snapshot.status) < 0:
            logger.debug(f"No usable snapshot for {market_id}")
            return None

        if snapshot.id != market_id:
            logger.debug(f"Snapshot for {market_id} reported id {snapshot.id}")
        return snapshot

    def _list_entry(
        self,
        market_id: str,
        active: dict[str, MarketSummary],
        trending: dict[str, MarketSummary]
    ) -> Optional[MarketSummary]:
        primary = active.get(market_id)
        secondary = trending.get(market_id)
        if primary is None or secondary is None:
            return primary or secondary
        return MarketSummary(
            id=market_id,
            url=primary.url or secondary.url,
            title=primary.title or secondary.title,
            category=primary.category or secondary.category,
            ends_in=primary.ends_in or secondary.ends_in,
            options=primary.options or secondary.options,
        )

    @staticmethod
    def merge_snapshot(snapshot: Snapshot, entry: Optional[MarketSummary], status: str) -> Snapshot:
        """
        Combine a detail snapshot with its list card.

        While the market is open the card's options, category and ends-in text
        win over the detail page's; otherwise the detail page wins and the
        card only fills gaps.

        Args:
            snapshot: Detail snapshot
            entry: List card for the same market, if listed
            status: Status decided for this tick

        Returns:
            New Snapshot with normalized options
        """
        entry_options = normalize_options(entry.options) if entry else []
        detail_options = normalize_options(snapshot.options)

        if status == MarketStatus.OPEN and entry is not None:
            options = entry_options or detail_options
            category = entry.category or snapshot.category
            ends_in = entry.ends_in or snapshot.ends_in
        else:
            options = detail_options or entry_options
            category = snapshot.category or (entry.category if entry else None)
            ends_in = snapshot.ends_in or (entry.ends_in if entry else None)

        return Snapshot(
            id=snapshot.id,
            url=snapshot.url,
            status=status,
            title=snapshot.title or (entry.title if entry else None),
            options=options,
            winner=snapshot.winner,
            close_time=snapshot.close_time,
            ends_in=ends_in,
            category=category,
        )

    # Tick

    def run_tick(self, lists: ListResult) -> TickResult:
        """
        Run one reconciliation cycle.

        Args:
            lists: Active and trending list sections from this tick's scrape

        Returns:
            TickResult describing what happened

        Raises:
            LedgerPersistError: If the ledger cannot be written
        """
        start = time.monotonic()
        result = TickResult()

        lists_seen = not lists.is_empty()
        if lists_seen:
            logger.info(f"Lists: active {len(lists.active)}, trending {len(lists.trending)}")
        else:
            logger.warning("Both lists empty, continuing with known markets")

        active = _index(lists.active)
        trending = _index(lists.trending)

        watch = self.compute_watch_set(active, trending)
        result.watched = len(watch)
        logger.info(f"Watching {len(watch)} markets")

        snapshots = self._acquire_snapshots(watch, active, trending, result)
        result.snapshots = len(snapshots)

        if not self.ledger.seeded:
            if snapshots:
                self._seed(snapshots, active, trending)
                self.ledger.seeded = True
                self.ledger.persist()
                result.seeded_now = True
                logger.info(f"Seeded ledger silently with {len(snapshots)} markets")
            else:
                logger.info("No snapshots yet, seeding deferred")
            return result

        for market_id, snapshot in snapshots.items():
            result.announcements.extend(
                self._reconcile_market(market_id, snapshot, active, trending, lists_seen)
            )

        if lists_seen:
            self._update_missing_counts(set(snapshots), active, trending)

        result.compacted = self.ledger.compact(self.high_water)
        self.ledger.persist()

        elapsed = time.monotonic() - start
        logger.info(
            f"Tick done in {elapsed:.1f}s: {result.snapshots}/{result.watched} snapshots, "
            f"{len(result.announcements)} announcements, {len(result.skipped)} skipped"
        )
        return result

    def _seed(
        self,
        snapshots: dict[str, Snapshot],
        active: dict[str, MarketSummary],
        trending: dict[str, MarketSummary]
    ) -> None:
        """Record every observed market as already announced up to its current status."""
        now = current_utc_timestamp()

        for market_id, snapshot in snapshots.items():
            existing = self.ledger.get(market_id)
            status = MarketStatus.advance(existing.status if existing else None, snapshot.status)
            entry = self._list_entry(market_id, active, trending)
            merged = self.merge_snapshot(snapshot, entry, status)
            rank = MarketStatus.rank(status)

            record = MarketRecord(
                id=market_id,
                status=status,
                url=(existing.url if existing else None) or (entry.url if entry else None) or snapshot.url,
                title=merged.title,
                announced_open=True,
                announced_closed=rank >= MarketStatus.rank(MarketStatus.CLOSED),
                announced_resolved=status == MarketStatus.RESOLVED,
                was_trending=market_id in trending,
                retired=status == MarketStatus.RESOLVED,
                first_seen_at=(existing.first_seen_at if existing else None) or now,
                updated_at=now,
            )

            if status == MarketStatus.OPEN:
                record.last_seen = LastSeen(
                    title=merged.title,
                    category=merged.category,
                    ends_in=merged.ends_in,
                    options=_first_options(merged.options),
                )
            elif merged.options:
                record.closed_snapshot = ClosedSnapshot(options=_first_options(merged.options))

            self.ledger.upsert(market_id, record)

    def _reconcile_market(
        self,
        market_id: str,
        snapshot: Snapshot,
        active: dict[str, MarketSummary],
        trending: dict[str, MarketSummary],
        lists_seen: bool
    ) -> list[Announcement]:
        """Apply one snapshot to one record, firing announcements in lifecycle order."""
        now = current_utc_timestamp()
        announcements: list[Announcement] = []

        record = self.ledger.get(market_id)
        previous_status: Optional[str] = None
        if record is None:
            record = MarketRecord(id=market_id, status=snapshot.status, first_seen_at=now)
        else:
            previous_status = record.status

        in_active = market_id in active
        in_trending = market_id in trending

        if lists_seen:
            record.missing_count = 0 if (in_active or in_trending) else record.missing_count + 1

        observed = snapshot.status
        if previous_status is not None and lists_seen:
            observed = infer_closed_from_absence(observed, record.missing_count, self.missing_close_threshold)
            if observed != snapshot.status:
                logger.info(f"{market_id} missing from lists for {record.missing_count} ticks, treating as closed")

        status = MarketStatus.advance(previous_status, observed)
        if status != observed:
            logger.debug(f"{market_id}: ignoring {observed} read, already {status}")

        entry = self._list_entry(market_id, active, trending)
        merged = self.merge_snapshot(snapshot, entry, status)

        record.url = record.url or (entry.url if entry else None) or snapshot.url
        last_seen = record.last_seen
        title = merged.title or (last_seen.title if last_seen else None) or record.title or market_id
        record.title = title

        if status == MarketStatus.OPEN:
            record.last_seen = LastSeen(
                title=merged.title or (last_seen.title if last_seen else None),
                category=merged.category or (last_seen.category if last_seen else None),
                ends_in=merged.ends_in or (last_seen.ends_in if last_seen else None),
                options=_first_options(merged.options, last_seen.options if last_seen else None),
            )
            last_seen = record.last_seen

        if status == MarketStatus.CLOSED and record.closed_snapshot is None:
            record.closed_snapshot = ClosedSnapshot(
                options=_first_options(last_seen.options if last_seen else None, merged.options)
            )
            logger.info(f"{market_id}: froze final pool with {len(record.closed_snapshot.options)} options")

        if status == MarketStatus.OPEN and in_active and not record.announced_open:
            options = _first_options(
                normalize_options(entry.options) if entry else None,
                last_seen.options if last_seen else None,
                merged.options
            )
            message = format_new_market(
                title=title,
                url=record.url,
                options=options,
                ends_in=(entry.ends_in if entry else None) or (last_seen.ends_in if last_seen else None) or merged.ends_in,
                category=(entry.category if entry else None) or (last_seen.category if last_seen else None) or merged.category,
            )
            announcements.append(self._announce(AnnouncementKind.OPEN, market_id, message))
            record.announced_open = True

        if (
            status == MarketStatus.CLOSED
            and not record.announced_closed
            and previous_status != MarketStatus.CLOSED
        ):
            options = self._final_options(record, merged)
            message = format_closed(title=title, url=record.url, options=options)
            announcements.append(self._announce(AnnouncementKind.CLOSED, market_id, message))
            record.announced_closed = True

        if status == MarketStatus.RESOLVED and not record.announced_resolved:
            options = self._final_options(record, merged)
            winner = resolve_winner(snapshot.winner, options) or "Unknown"
            message = format_resolved(title=title, url=record.url, winner=winner, options=options)
            announcements.append(self._announce(AnnouncementKind.RESOLVED, market_id, message))
            record.announced_resolved = True
            record.retired = True

        if lists_seen:
            if in_trending and not record.was_trending:
                message = format_trending(title=title, url=record.url, options=merged.options)
                announcements.append(self._announce(AnnouncementKind.TRENDING, market_id, message))
            record.was_trending = in_trending

        record.status = status
        record.updated_at = now
        self.ledger.upsert(market_id, record)
        return announcements

    @staticmethod
    def _final_options(record: MarketRecord, merged: Snapshot) -> list[Option]:
        """Frozen closed pool, else last open view, else the current read."""
        return _first_options(
            record.closed_snapshot.options if record.closed_snapshot else None,
            record.last_seen.options if record.last_seen else None,
            merged.options
        )

    def _announce(self, kind: str, market_id: str, message: str) -> Announcement:
        """Send one announcement; delivery failures are logged, never raised."""
        destination = self.ledger.target_chat_id or self.default_chat_id
        announcement = Announcement(kind=kind, market_id=market_id, message=message)

        try:
            announcement.delivered = bool(self.notify(destination, message))
        except Exception as e:
            logger.error(f"Failed to deliver {kind} announcement for {market_id}: {e}", exc_info=True)

        logger.info(f"Announced {kind} for {market_id} (delivered={announcement.delivered})")
        return announcement

    def _update_missing_counts(
        self,
        processed: set[str],
        active: dict[str, MarketSummary],
        trending: dict[str, MarketSummary]
    ) -> None:
        for market_id, record in self.ledger.all():
            if market_id in processed:
                continue
            if market_id in active or market_id in trending:
                record.missing_count = 0
            else:
                record.missing_count += 1
            self.ledger.upsert(market_id, record)
