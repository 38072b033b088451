# backend/utils/events.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Set, Tuple

from fastapi import BackgroundTasks, Request

logger = logging.getLogger(__name__)

# Event names published to connected clients
NEW_MESSAGE = "newMessage"
QUOTATION_SUBMITTED = "quotationSubmitted"
QUOTATION_ACCEPTED = "quotationAccepted"
QUOTATION_REJECTED = "quotationRejected"
ORDER_UPDATED = "orderUpdated"
USER_TYPING = "userTyping"


def order_room(order_id: int) -> str:
    return f"order_{order_id}"


def vendor_room(vendor_id: int) -> str:
    return f"vendor_{vendor_id}"


@dataclass(frozen=True)
class Event:
    name: str
    data: Dict[str, Any]
    rooms: Tuple[str, ...] = field(default_factory=tuple)

    def envelope(self) -> dict:
        return {"event": self.name, "data": self.data}


class EventBus:
    """Room based fan-out of events to websocket connections.

    Rooms are plain strings (``order_<id>``, ``vendor_<id>``). A connection
    that fails on send is dropped from every room it joined.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[Any]] = {}

    def join(self, websocket, room: str) -> None:
        self._rooms.setdefault(room, set()).add(websocket)

    def leave(self, websocket, room: str) -> None:
        members = self._rooms.get(room)
        if not members:
            return
        members.discard(websocket)
        if not members:
            del self._rooms[room]

    def discard(self, websocket) -> None:
        for room in list(self._rooms):
            self.leave(websocket, room)

    def members(self, room: str) -> Set[Any]:
        return set(self._rooms.get(room, ()))

    async def publish(self, event: Event, exclude=None) -> int:
        # Each connection gets the event once even when it sits in several target rooms
        targets = set()
        for room in event.rooms:
            targets |= self.members(room)
        targets.discard(exclude)

        sent = 0
        payload = event.envelope()
        for websocket in targets:
            try:
                await websocket.send_json(payload)
                sent += 1
            except Exception as e:
                logger.info("Dropping websocket after failed send of %s: %s", event.name, e)
                self.discard(websocket)
        return sent

    async def publish_all(self, events: Iterable[Event]) -> None:
        for event in events:
            await self.publish(event)


# FastAPI dependency: the process-wide bus created in main.py
def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


# Publish committed events once the response has been sent
def publish_after_response(background_tasks: BackgroundTasks, bus: EventBus, events) -> None:
    if events:
        background_tasks.add_task(bus.publish_all, list(events))
