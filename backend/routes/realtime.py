# backend/routes/realtime.py
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from database import SessionLocal
from models.order import Order
from models.users import User
from services.base import can_read
from utils.events import USER_TYPING, Event, order_room, vendor_room
from utils.tokenJWT import decode_user

router = APIRouter(tags=["Realtime"])
logger = logging.getLogger(__name__)


# Resolve the token to the user id and role without keeping a session open
def _authenticate(token: str) -> Optional[dict]:
    db = SessionLocal()
    try:
        user = decode_user(token, db)
        if user is None:
            return None
        return {"id": user.id, "role": user.role}
    finally:
        db.close()


def _may_join_order(user_id: int, order_id: int) -> bool:
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        order = db.get(Order, order_id)
        return user is not None and order is not None and can_read(user, order)
    finally:
        db.close()


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@router.websocket("/ws")
async def realtime(websocket: WebSocket, token: str = Query(None)):
    """Room based realtime channel.

    Client frames are ``{"event": name, "data": {...}}`` with events
    joinOrder, leaveOrder, joinVendor and typing.
    """
    user = await run_in_threadpool(_authenticate, token) if token else None
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    bus = websocket.app.state.event_bus
    await websocket.accept()
    joined = set()
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "data": {"detail": "Malformed frame"}})
                continue
            event = frame.get("event") if isinstance(frame, dict) else None
            data = (frame.get("data") or {}) if isinstance(frame, dict) else {}

            if event == "joinOrder":
                order_id = _as_int(data.get("orderId"))
                if order_id is None or not await run_in_threadpool(_may_join_order, user["id"], order_id):
                    await websocket.send_json({"event": "error", "data": {"detail": "Cannot join this order", "orderId": data.get("orderId")}})
                    continue
                room = order_room(order_id)
                bus.join(websocket, room)
                joined.add(room)
                await websocket.send_json({"event": "joined", "data": {"room": room}})

            elif event == "leaveOrder":
                room = order_room(_as_int(data.get("orderId")))
                bus.leave(websocket, room)
                joined.discard(room)
                await websocket.send_json({"event": "left", "data": {"room": room}})

            elif event == "joinVendor":
                vendor_id = _as_int(data.get("vendorId"))
                if (user["role"] or "").lower() != "vendor" or vendor_id != user["id"]:
                    await websocket.send_json({"event": "error", "data": {"detail": "Cannot join this vendor room"}})
                    continue
                room = vendor_room(vendor_id)
                bus.join(websocket, room)
                joined.add(room)
                await websocket.send_json({"event": "joined", "data": {"room": room}})

            elif event == "typing":
                order_id = _as_int(data.get("orderId"))
                room = order_room(order_id)
                if room not in joined:
                    continue
                await bus.publish(
                    Event(USER_TYPING, {"orderId": order_id, "userId": user["id"], "isTyping": bool(data.get("isTyping"))}, (room,)),
                    exclude=websocket,
                )

            else:
                await websocket.send_json({"event": "error", "data": {"detail": f"Unknown event: {event}"}})
    except WebSocketDisconnect:
        pass
    finally:
        bus.discard(websocket)
        logger.debug("Realtime connection of user %s closed", user["id"])
