"""
Data models for the Auracle market bot.

This module defines the core dataclasses used throughout the application
for representing scraped markets, per-market ledger state and announcements.
Scraped values are best-effort: every field except the identifier, URL and
status may be missing.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from auracle_bot.utils import safe_int


class MarketStatus:
    """Lifecycle states of a market, in the only order they may advance."""
    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"

    ORDER = (OPEN, CLOSED, RESOLVED)

    @classmethod
    def rank(cls, status: Optional[str]) -> int:
        """Position of a status in the lifecycle, -1 for unknown values."""
        try:
            return cls.ORDER.index(status)
        except ValueError:
            return -1

    @classmethod
    def advance(cls, stored: Optional[str], observed: Optional[str]) -> Optional[str]:
        """Return whichever of two statuses is further along the lifecycle."""
        return observed if cls.rank(observed) > cls.rank(stored) else stored


class AnnouncementKind:
    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"
    TRENDING = "trending"


@dataclass
class Option:
    """
    One outcome of a market.

    Attributes:
        label: Display label of the outcome
        pct: Implied percentage (0-100), None when not extracted
    """
    label: str
    pct: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "pct": self.pct}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Option":
        return cls(label=str(data.get("label", "")), pct=safe_int(data.get("pct")))


def _options_from(raw: Optional[list]) -> list[Option]:
    return [Option.from_dict(o) for o in (raw or []) if isinstance(o, dict)]


@dataclass
class MarketSummary:
    """
    A market as it appears on the list page.

    Attributes:
        id: Market identifier
        url: Detail page URL
        title: Card title
        category: Card category tag
        ends_in: Human readable time left, e.g. "in about 3 hours"
        options: Options shown on the card
    """
    id: str
    url: str
    title: Optional[str] = None
    category: Optional[str] = None
    ends_in: Optional[str] = None
    options: list[Option] = field(default_factory=list)


@dataclass
class ListResult:
    """The two list sections returned by one list scrape."""
    active: list[MarketSummary] = field(default_factory=list)
    trending: list[MarketSummary] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.active and not self.trending


@dataclass
class Snapshot:
    """
    Best-effort view of a market detail page.

    Attributes:
        id: Market identifier, None when extraction failed
        url: URL the snapshot was read from
        status: One of MarketStatus values
        title: Page title
        options: Extracted options
        winner: Raw or mapped winner text for resolved markets
        close_time: ISO 8601 close time
        ends_in: Human readable time left derived from close_time
        category: Category tag if the page shows one
    """
    id: Optional[str]
    url: str
    status: str = MarketStatus.OPEN
    title: Optional[str] = None
    options: list[Option] = field(default_factory=list)
    winner: Optional[str] = None
    close_time: Optional[str] = None
    ends_in: Optional[str] = None
    category: Optional[str] = None


@dataclass
class LastSeen:
    """Most recent rich open-state view of a market."""
    title: Optional[str] = None
    category: Optional[str] = None
    ends_in: Optional[str] = None
    options: list[Option] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "category": self.category,
            "endsIn": self.ends_in,
            "options": [o.to_dict() for o in self.options],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LastSeen":
        return cls(
            title=data.get("title"),
            category=data.get("category"),
            ends_in=data.get("endsIn"),
            options=_options_from(data.get("options")),
        )


@dataclass
class ClosedSnapshot:
    """Final pool frozen at the tick a market is first seen closed."""
    options: list[Option] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"options": [o.to_dict() for o in self.options]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClosedSnapshot":
        return cls(options=_options_from(data.get("options")))


@dataclass
class MarketRecord:
    """
    Durable reconciliation state for one market.

    The announced_* flags only ever go from False to True and are the sole
    guard against duplicate notifications. status only moves forward.

    Attributes:
        id: Market identifier
        status: Last recorded MarketStatus
        url: Remembered canonical detail URL
        title: Last known title
        announced_open: "New market" message was sent (or suppressed by seeding)
        announced_closed: "Closed" message was sent
        announced_resolved: "Resolved" message was sent
        was_trending: Trending membership on the last tick that saw the lists
        last_seen: Latest open-state view used as fallback
        closed_snapshot: Frozen final pool
        missing_count: Consecutive ticks absent from both list sections
        retired: Resolution announced; excluded from polling
        first_seen_at: ISO timestamp the record was created
        updated_at: ISO timestamp of the last change
    """
    id: str
    status: str
    url: Optional[str] = None
    title: Optional[str] = None
    announced_open: bool = False
    announced_closed: bool = False
    announced_resolved: bool = False
    was_trending: bool = False
    last_seen: Optional[LastSeen] = None
    closed_snapshot: Optional[ClosedSnapshot] = None
    missing_count: int = 0
    retired: bool = False
    first_seen_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the state file's camelCase keys."""
        return {
            "id": self.id,
            "status": self.status,
            "url": self.url,
            "title": self.title,
            "announcedOpen": self.announced_open,
            "announcedClosed": self.announced_closed,
            "announcedResolved": self.announced_resolved,
            "wasTrending": self.was_trending,
            "lastSeen": self.last_seen.to_dict() if self.last_seen else None,
            "closedSnapshot": self.closed_snapshot.to_dict() if self.closed_snapshot else None,
            "missingCount": self.missing_count,
            "retired": self.retired,
            "firstSeenAt": self.first_seen_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, market_id: str, data: dict[str, Any]) -> "MarketRecord":
        """
        Build a record from its stored form.

        Missing keys take defaults so state written by older versions (which
        had no status, or stored lastStatus) still loads.

        Args:
            market_id: Ledger key
            data: Stored record dictionary

        Returns:
            MarketRecord instance
        """
        status = data.get("status") or data.get("lastStatus")
        if MarketStatus.rank(status) < 0:
            if data.get("announcedResolved"):
                status = MarketStatus.RESOLVED
            elif data.get("announcedClosed"):
                status = MarketStatus.CLOSED
            else:
                status = MarketStatus.OPEN

        last_seen = data.get("lastSeen")
        closed_snapshot = data.get("closedSnapshot")

        return cls(
            id=str(data.get("id") or market_id),
            status=status,
            url=data.get("url"),
            title=data.get("title"),
            announced_open=bool(data.get("announcedOpen", False)),
            announced_closed=bool(data.get("announcedClosed", False)),
            announced_resolved=bool(data.get("announcedResolved", False)),
            was_trending=bool(data.get("wasTrending", data.get("announcedTrending", False))),
            last_seen=LastSeen.from_dict(last_seen) if isinstance(last_seen, dict) else None,
            closed_snapshot=ClosedSnapshot.from_dict(closed_snapshot) if isinstance(closed_snapshot, dict) else None,
            missing_count=int(data.get("missingCount", 0) or 0),
            retired=bool(data.get("retired", False)),
            first_seen_at=data.get("firstSeenAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class Announcement:
    """A lifecycle notification fired during a tick."""
    kind: str
    market_id: str
    message: str
    delivered: bool = False
