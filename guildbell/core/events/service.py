"""Local events discovery — providers, TTL cache and Discord embed formatting."""

from __future__ import annotations

import re
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Protocol

import httpx
import pydantic
from loguru import logger

from guildbell.core.cron.errors import DiscoveryError, ValidationError
from guildbell.core.cron.expressions import get_zone
from guildbell.core.cron.types import DEFAULT_TIMEZONE, LocalEvent

if TYPE_CHECKING:
    from guildbell.core.config.schema import Config

EMBED_COLOR = 0x5865F2  # Discord blurple
EMPTY_COLOR = 0x9CA3AF  # grey
MAX_FIELDS = 25

_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")
_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})\s*([AaPp][Mm])")


class EventDiscovery(Protocol):
    """What the scheduler needs to announce events."""

    async def discover(self, location: str, start: datetime, end: datetime) -> list[LocalEvent]: ...

    def format(self, events: list[LocalEvent], location: str) -> dict[str, Any]: ...


class EventProvider(Protocol):
    name: str

    async def discover_events(
        self, location: str, start: datetime, end: datetime
    ) -> list[LocalEvent]: ...


# ════════════════════════════════════════════════════════════
# PROVIDERS
# ════════════════════════════════════════════════════════════


class MockEventProvider:
    """Sample events relative to the window start, for development."""

    name = "Mock Provider (Development)"

    async def discover_events(self, location, start, end) -> list[LocalEvent]:
        logger.info(f"Using mock event provider for {location}")
        day = start.replace(second=0, microsecond=0)
        return [
            LocalEvent(
                title="Weekend Farmers Market",
                description="Fresh produce, artisan goods, and local crafts at the downtown plaza.",
                start=_shift(day, 2, 9),
                end=_shift(day, 2, 14),
                location="Downtown Plaza, Main Street",
                url="https://example.com/farmers-market",
                source="Mock Data",
            ),
            LocalEvent(
                title="Community Art Exhibition",
                description="Featuring works by local artists with free admission.",
                start=_shift(day, 3, 18),
                location="City Art Gallery, 123 Gallery St",
                url="https://example.com/art-exhibition",
                source="Mock Data",
            ),
            LocalEvent(
                title="Live Music in the Park",
                description="Free outdoor concert featuring local bands.",
                start=_shift(day, 5, 19),
                location="Central Park Amphitheater",
                source="Mock Data",
            ),
        ]


def _shift(day: datetime, days: int, hour: int) -> datetime:
    return (day + timedelta(days=days)).replace(hour=hour, minute=0)


class HttpEventProvider:
    """Fetches events from a JSON feed.

    The feed is queried with ``location``, ``start`` and ``end`` (ISO 8601)
    and must answer with a list of events, or ``{"events": [...]}``. Each
    item carries ``start`` (ISO), or the looser ``date`` + ``time`` pair
    (``"2026-02-16"``, ``"6:00 PM - 9:00 PM"``).
    """

    name = "HTTP events feed"

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        timeout_s: float = 30.0,
        timezone: str = DEFAULT_TIMEZONE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.timezone = timezone
        self._transport = transport

    async def discover_events(self, location, start, end) -> list[LocalEvent]:
        params = {"location": location, "start": start.isoformat(), "end": end.isoformat()}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s),
                headers=self._headers(),
                transport=self._transport,
            ) as client:
                resp = await client.get(self.api_url, params=params)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DiscoveryError(f"Events feed request failed for {location}: {e}") from e

        raw_events = data.get("events", []) if isinstance(data, dict) else data
        if not isinstance(raw_events, list):
            raise DiscoveryError("Events feed returned an unexpected payload")

        events = []
        for raw in raw_events:
            event = self._parse(raw)
            if event is not None:
                events.append(event)
        logger.info(f"Events feed returned {len(events)} event(s) for {location}")
        return events

    def _parse(self, raw: Any) -> LocalEvent | None:
        if not isinstance(raw, dict):
            return None
        item = dict(raw)
        item.setdefault("source", self.name)
        try:
            if "start" not in item and "date" in item:
                item["start"] = self._start_from_parts(str(item["date"]), item.get("time"))
            return LocalEvent.model_validate(item)
        except (pydantic.ValidationError, ValueError) as e:
            logger.warning(f"Skipping unparseable event {raw.get('title')!r}: {e}")
            return None

    def _start_from_parts(self, date_str: str, time_str: str | None) -> datetime:
        match = _DATE_RE.search(date_str)
        if not match:
            raise ValueError(f"no date in {date_str!r}")
        day = datetime.strptime(match.group(1), "%Y-%m-%d")
        hour, minute = 12, 0
        t = _TIME_RE.search(time_str or "")
        if t:
            hour = int(t.group(1)) % 12 + (12 if t.group(3).lower() == "pm" else 0)
            minute = int(t.group(2))
        return day.replace(hour=hour, minute=minute, tzinfo=get_zone(self.timezone))

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers


# ════════════════════════════════════════════════════════════
# SERVICE
# ════════════════════════════════════════════════════════════


class EventsService:
    """Caches provider results per (location, window) and renders embeds."""

    def __init__(
        self,
        provider: EventProvider,
        cache_ttl_s: int = 3600,
        max_results: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.cache_ttl_s = cache_ttl_s
        self.max_results = max_results
        self._clock = clock
        self._cache: dict[str, tuple[float, list[LocalEvent]]] = {}
        logger.info(
            f"EventsService initialized: provider={provider.name}, "
            f"ttl={cache_ttl_s}s, max_results={max_results}"
        )

    async def discover(self, location: str, start: datetime, end: datetime) -> list[LocalEvent]:
        key = self._cache_key(location, start, end)
        cached = self._get_cached(key)
        if cached is not None:
            logger.info(f"Returning {len(cached)} cached event(s) for {location}")
            return cached

        try:
            events = await self.provider.discover_events(location, start, end)
        except DiscoveryError:
            logger.error(f"Event discovery failed for {location} ({self.provider.name})")
            raise
        except Exception as e:
            logger.error(f"Event discovery failed for {location} ({self.provider.name}): {e}")
            raise DiscoveryError(str(e)) from e

        limited = events[: self.max_results]
        self._prune()
        self._cache[key] = (self._clock(), limited)
        logger.info(f"Fetched and cached {len(limited)} event(s) for {location}")
        return limited

    def format(self, events: list[LocalEvent], location: str) -> dict[str, Any]:
        """Discord embed payload for ``events``."""
        embed: dict[str, Any] = {
            "title": f"📅 Local Events in {location}",
            "color": EMBED_COLOR,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if not events:
            embed["color"] = EMPTY_COLOR
            embed["description"] = (
                "🔍 No upcoming events found for this location.\n\n"
                "Try checking back later or adjusting your location settings."
            )
            return embed

        ordered = sorted(events, key=lambda e: e.start)
        fields = []
        for i, event in enumerate(ordered[:MAX_FIELDS], start=1):
            value = (
                f"📍 {truncate(event.location, 50)}\n"
                f"🕐 {_format_date(event.start)} at {_format_time(event.start)}\n"
                f"{truncate(event.description, 100)}"
            )
            if event.url:
                value += f"\n[More info]({event.url})"
            fields.append({"name": f"{i}. {truncate(event.title, 80)}", "value": value, "inline": False})

        embed["fields"] = fields
        embed["footer"] = {"text": f"Powered by {self.provider.name} • {len(events)} events found"}
        return embed

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Events cache cleared")

    @staticmethod
    def _cache_key(location: str, start: datetime, end: datetime) -> str:
        return f"{location}:{start.date().isoformat()}:{end.date().isoformat()}".lower()

    def _prune(self) -> None:
        """Drop every expired entry, not just the one being looked up."""
        now = self._clock()
        expired = [
            key for key, (stored_at, _) in self._cache.items()
            if now - stored_at > self.cache_ttl_s
        ]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"Events cache pruned {len(expired)} expired key(s)")

    def _get_cached(self, key: str) -> list[LocalEvent] | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, events = entry
        if self._clock() - stored_at > self.cache_ttl_s:
            del self._cache[key]
            logger.debug(f"Events cache expired: {key}")
            return None
        return events


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _format_date(value: datetime) -> str:
    return f"{value:%a, %b} {value.day}"


def _format_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    ampm = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {ampm}"


def build_events_service(config: Config) -> EventsService:
    """Pick the provider named in ``config.events``. Unknown names fall back to mock."""
    events = config.events
    name = events.provider.lower()
    if name in ("mock", "development"):
        provider: EventProvider = MockEventProvider()
    elif name == "http":
        if not events.api_url:
            raise ValidationError("events.api_url is required for the http provider")
        provider = HttpEventProvider(
            events.api_url,
            api_key=events.api_key,
            timezone=config.scheduler.default_timezone,
        )
    else:
        logger.warning(f"Unknown events provider {events.provider!r}, falling back to mock")
        provider = MockEventProvider()
    return EventsService(provider, cache_ttl_s=events.cache_ttl_s, max_results=events.max_results)
