"""
Tools de solo lectura sobre los datos de la boda (invitados y eventos).
"""
import logging
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional

from agent.db_utils import DataStore
from agent.models import ToolDeclaration
from agent.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

GUEST_FILTERS = ("confirmed", "declined", "maybe", "no_response", "sent", "pending", "all")

_FILTERS: Dict[str, Callable[[Dict[str, Any]], bool]] = {
    "confirmed": lambda g: g.get("attending") == "yes",
    "declined": lambda g: g.get("attending") == "no",
    "maybe": lambda g: g.get("attending") == "perhaps",
    "no_response": lambda g: not g.get("attending"),
    "sent": lambda g: g.get("save_the_date_sent") is True,
    "pending": lambda g: g.get("save_the_date_sent") is not True,
}

GUEST_STATISTICS_DECLARATION = ToolDeclaration.build(
    name="get_guest_statistics",
    description=(
        "Get statistics about wedding guests including total count, confirmations, "
        "declines, and RSVP status"
    ),
)

LIST_GUESTS_DECLARATION = ToolDeclaration.build(
    name="list_guests",
    description="List all guests or filter by status (confirmed, declined, maybe, no_response, sent, pending)",
    parameters={
        "type": "object",
        "properties": {
            "filter": {
                "type": "string",
                "enum": list(GUEST_FILTERS),
                "description": "Filter guests by their status",
            },
        },
        "required": [],
    },
)

LIST_EVENTS_DECLARATION = ToolDeclaration.build(
    name="list_events",
    description="List all wedding events with their details",
)


def _party_size(guest: Dict[str, Any]) -> int:
    return guest.get("total_guests") or 1


def _jsonable(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: v.isoformat() if isinstance(v, (date, datetime, time)) else v
        for k, v in row.items()
    }


class GuestTools:
    def __init__(self, store: DataStore):
        self.store = store

    async def get_guest_statistics(self, args: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        guests = await self.store.list_guests()
        confirmed = [g for g in guests if _FILTERS["confirmed"](g)]
        return {
            "total_guests": len(guests),
            "total_people": sum(_party_size(g) for g in guests),
            "confirmed": len(confirmed),
            "confirmed_people": sum(_party_size(g) for g in confirmed),
            "declined": sum(1 for g in guests if _FILTERS["declined"](g)),
            "maybe": sum(1 for g in guests if _FILTERS["maybe"](g)),
            "no_response": sum(1 for g in guests if _FILTERS["no_response"](g)),
            "invites_sent": sum(1 for g in guests if _FILTERS["sent"](g)),
            "invites_pending": sum(1 for g in guests if _FILTERS["pending"](g)),
        }

    async def list_guests(self, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invitados ordenados por nombre; filtro desconocido o "all" = todos."""
        guest_filter = (args or {}).get("filter") or "all"
        guests = await self.store.list_guests()
        predicate = _FILTERS.get(guest_filter)
        if predicate is not None:
            guests = [g for g in guests if predicate(g)]
        elif guest_filter != "all":
            logger.warning("list_guests: unknown filter '%s', returning all guests", guest_filter)
        return {"filter": guest_filter, "count": len(guests), "guests": [_jsonable(g) for g in guests]}

    def register(self, registry: ToolRegistry) -> None:
        registry.register(GUEST_STATISTICS_DECLARATION, self.get_guest_statistics)
        registry.register(LIST_GUESTS_DECLARATION, self.list_guests)


class EventTools:
    def __init__(self, store: DataStore):
        self.store = store

    async def list_events(self, args: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return [_jsonable(e) for e in await self.store.list_events()]

    def register(self, registry: ToolRegistry) -> None:
        registry.register(LIST_EVENTS_DECLARATION, self.list_events)
