# backend/client/state.py
"""Client-side view of one order, driven by a pure reducer.

``reduce(view, action)`` never mutates its input. Optimistic changes live in
``view.pending`` keyed by entity (``message:<clientRef>``,
``quotation:<messageId>``) and are dropped wholesale as soon as a server
event about the same entity arrives. Whenever the server contradicts an
overlay, or an ``orderUpdated`` skips a version, ``needs_reload`` is set and
the owner should fetch a fresh snapshot once.
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

NEW_MESSAGE = "newMessage"
QUOTATION_SUBMITTED = "quotationSubmitted"
QUOTATION_ACCEPTED = "quotationAccepted"
QUOTATION_REJECTED = "quotationRejected"
ORDER_UPDATED = "orderUpdated"
USER_TYPING = "userTyping"

SERVER_EVENTS = {NEW_MESSAGE, QUOTATION_SUBMITTED, QUOTATION_ACCEPTED, QUOTATION_REJECTED, ORDER_UPDATED, USER_TYPING}


def message_key(client_ref: str) -> str:
    return f"message:{client_ref}"


def quotation_key(message_id: int) -> str:
    return f"quotation:{message_id}"


@dataclass(frozen=True)
class OrderView:
    order_id: int
    order: Mapping[str, Any] = field(default_factory=dict)
    version: int = 0
    messages: Tuple[Mapping[str, Any], ...] = ()
    pending: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    needs_reload: bool = False
    typing: FrozenSet[int] = frozenset()


# --- actions ---

@dataclass(frozen=True)
class Reloaded:
    order: Mapping[str, Any]
    messages: Tuple[Mapping[str, Any], ...]


@dataclass(frozen=True)
class LocalMessage:
    client_ref: str
    content: str
    sender_id: Optional[int] = None


@dataclass(frozen=True)
class LocalDecision:
    message_id: int
    status: str  # "accepted" or "rejected"
    reason: Optional[str] = None


@dataclass(frozen=True)
class ServerEvent:
    name: str
    data: Mapping[str, Any]


@dataclass(frozen=True)
class ActionConfirmed:
    key: str
    message: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class ActionFailed:
    key: str
    conflict: bool = False


def _sort_key(message: Mapping[str, Any]):
    return (message.get("createdAt") or "", message.get("id") or 0)


def _merge_message(messages, message) -> Tuple[Mapping[str, Any], ...]:
    kept = [m for m in messages if m.get("id") != message.get("id")]
    kept.append(dict(message))
    return tuple(sorted(kept, key=_sort_key))


def _set_quotation_status(messages, message_id, status, **extra) -> Tuple[Mapping[str, Any], ...]:
    out = []
    for m in messages:
        if m.get("id") == message_id and m.get("type") == "quotation":
            payload = dict(m.get("payload") or {})
            payload["status"] = status
            payload.update(extra)
            m = {**m, "payload": payload}
        out.append(m)
    return tuple(out)


def _without(pending, *keys) -> Dict[str, Mapping[str, Any]]:
    return {k: v for k, v in pending.items() if k not in keys}


def _quotation_overlays(pending) -> Dict[int, str]:
    return {
        int(k.split(":", 1)[1]): v.get("status")
        for k, v in pending.items()
        if k.startswith("quotation:")
    }


def _apply_event(view: OrderView, name: str, data: Mapping[str, Any]) -> OrderView:
    if data.get("orderId") not in (None, view.order_id):
        return view

    if name == NEW_MESSAGE:
        pending = dict(view.pending)
        if data.get("clientRef"):
            pending = _without(pending, message_key(data["clientRef"]))
        return replace(view, messages=_merge_message(view.messages, data), pending=pending)

    if name == QUOTATION_SUBMITTED:
        messages = view.messages
        overlays = _quotation_overlays(view.pending)
        needs_reload = view.needs_reload
        for superseded in data.get("supersededIds") or []:
            messages = _set_quotation_status(messages, superseded, "negotiated")
            if superseded in overlays:
                needs_reload = True
        keys = [quotation_key(i) for i in data.get("supersededIds") or []]
        return replace(view, messages=messages, pending=_without(view.pending, *keys), needs_reload=needs_reload)

    if name == QUOTATION_ACCEPTED:
        accepted = data.get("messageId")
        overlays = _quotation_overlays(view.pending)
        # Any overlay other than "this one was accepted" is contradicted
        contradicted = any(mid != accepted or status != "accepted" for mid, status in overlays.items())
        return replace(
            view,
            messages=_set_quotation_status(view.messages, accepted, "accepted"),
            pending={k: v for k, v in view.pending.items() if not k.startswith("quotation:")},
            needs_reload=view.needs_reload or contradicted,
        )

    if name == QUOTATION_REJECTED:
        rejected = data.get("messageId")
        overlays = _quotation_overlays(view.pending)
        contradicted = overlays.get(rejected) not in (None, "rejected")
        return replace(
            view,
            messages=_set_quotation_status(view.messages, rejected, "rejected", rejectionReason=data.get("reason")),
            pending=_without(view.pending, quotation_key(rejected)),
            needs_reload=view.needs_reload or contradicted,
        )

    if name == ORDER_UPDATED:
        version = data.get("version") or 0
        if version <= view.version:
            return view
        gap = view.version > 0 and version > view.version + 1
        order = {**view.order}
        for key in ("status", "chatClosed", "finalAmount", "deliveryTracking"):
            if key in data:
                order[key] = data[key]
        order["version"] = version
        return replace(view, order=order, version=version, needs_reload=view.needs_reload or gap)

    if name == USER_TYPING:
        user_id = data.get("userId")
        typing = set(view.typing)
        if data.get("isTyping"):
            typing.add(user_id)
        else:
            typing.discard(user_id)
        return replace(view, typing=frozenset(typing))

    return view


def reduce(view: OrderView, action) -> OrderView:
    if isinstance(action, Reloaded):
        return OrderView(
            order_id=view.order_id,
            order=dict(action.order),
            version=action.order.get("version") or 0,
            messages=tuple(sorted((dict(m) for m in action.messages), key=_sort_key)),
            typing=view.typing,
        )

    if isinstance(action, LocalMessage):
        optimistic = {
            "id": None,
            "orderId": view.order_id,
            "type": "text",
            "senderId": action.sender_id,
            "content": action.content,
            "clientRef": action.client_ref,
            "pendingLocal": True,
        }
        return replace(view, pending={**view.pending, message_key(action.client_ref): optimistic})

    if isinstance(action, LocalDecision):
        overlay = {"status": action.status, "reason": action.reason}
        return replace(view, pending={**view.pending, quotation_key(action.message_id): overlay})

    if isinstance(action, ServerEvent):
        return _apply_event(view, action.name, action.data)

    if isinstance(action, ActionConfirmed):
        messages = view.messages
        if action.message is not None:
            messages = _merge_message(messages, action.message)
        return replace(view, messages=messages, pending=_without(view.pending, action.key))

    if isinstance(action, ActionFailed):
        return replace(view, pending=_without(view.pending, action.key), needs_reload=view.needs_reload or action.conflict)

    raise TypeError(f"Unknown action: {action!r}")


def visible_messages(view: OrderView) -> Tuple[Mapping[str, Any], ...]:
    """Messages as the user should see them: server state plus local overlays."""
    overlays = _quotation_overlays(view.pending)
    out = []
    for m in view.messages:
        if m.get("id") in overlays and m.get("type") == "quotation":
            m = {**m, "payload": {**(m.get("payload") or {}), "status": overlays[m["id"]]}, "pendingLocal": True}
        out.append(m)
    out.extend(v for k, v in view.pending.items() if k.startswith("message:"))
    return tuple(out)
