"""Local event discovery."""

from guildbell.core.events.service import (
    EventDiscovery,
    EventsService,
    HttpEventProvider,
    MockEventProvider,
    build_events_service,
)

__all__ = [
    "EventDiscovery",
    "EventsService",
    "HttpEventProvider",
    "MockEventProvider",
    "build_events_service",
]
