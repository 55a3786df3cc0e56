from datetime import date, time

import pytest

from agent.tool_registry import ToolRegistry
from agent.wedding_tools import EventTools, GuestTools


@pytest.fixture
def guests(store):
    store.guests = [
        {"name": "Carla", "attending": "yes", "total_guests": 2, "save_the_date_sent": True},
        {"name": "Ana", "attending": "yes", "total_guests": None, "save_the_date_sent": True},
        {"name": "Bruno", "attending": "no", "total_guests": 3, "save_the_date_sent": False},
        {"name": "Diego", "attending": "perhaps", "total_guests": 1, "save_the_date_sent": None},
        {"name": "Eva", "attending": None, "total_guests": 4, "save_the_date_sent": True},
    ]
    return GuestTools(store)


@pytest.mark.asyncio
async def test_guest_statistics(guests):
    stats = await guests.get_guest_statistics()
    assert stats == {
        "total_guests": 5,
        "total_people": 11,
        "confirmed": 2,
        "confirmed_people": 3,
        "declined": 1,
        "maybe": 1,
        "no_response": 1,
        "invites_sent": 3,
        "invites_pending": 2,
    }


@pytest.mark.asyncio
async def test_list_guests_filters(guests):
    confirmed = await guests.list_guests({"filter": "confirmed"})
    assert confirmed["filter"] == "confirmed"
    assert confirmed["count"] == 2
    assert [g["name"] for g in confirmed["guests"]] == ["Ana", "Carla"]

    pending = await guests.list_guests({"filter": "pending"})
    assert [g["name"] for g in pending["guests"]] == ["Bruno", "Diego"]

    everyone = await guests.list_guests({})
    assert everyone["filter"] == "all"
    assert everyone["count"] == 5


@pytest.mark.asyncio
async def test_unknown_filter_returns_everyone(guests):
    result = await guests.list_guests({"filter": "vegetarian"})
    assert result["count"] == 5


@pytest.mark.asyncio
async def test_list_events_serializes_dates(store):
    store.events = [
        {"name": "Ceremony", "event_date": date(2027, 5, 22), "event_time": time(16, 0), "location": "Sintra"},
        {"name": "Welcome dinner", "event_date": date(2027, 5, 21), "event_time": None, "location": "Lisbon"},
    ]
    events = await EventTools(store).list_events()
    assert [e["name"] for e in events] == ["Welcome dinner", "Ceremony"]
    assert events[1]["event_date"] == "2027-05-22"
    assert events[1]["event_time"] == "16:00:00"


@pytest.mark.asyncio
async def test_registered_through_registry(store, guests):
    registry = ToolRegistry()
    guests.register(registry)
    EventTools(store).register(registry)

    assert registry.tool_names == ["get_guest_statistics", "list_guests", "list_events"]
    stats = await registry.execute("get_guest_statistics", {})
    assert stats["total_guests"] == 5
