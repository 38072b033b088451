# backend/client/session.py
import logging
import uuid
from collections import deque
from contextlib import ExitStack, contextmanager
from typing import Callable, ContextManager, Optional

import httpx

from client.state import (
    ActionConfirmed,
    ActionFailed,
    LocalDecision,
    LocalMessage,
    OrderView,
    Reloaded,
    SERVER_EVENTS,
    ServerEvent,
    message_key,
    quotation_key,
    reduce,
)
from config import settings

logger = logging.getLogger(__name__)


class ActionRejected(Exception):
    """The server refused an action; ``body`` carries its error payload."""

    def __init__(self, status_code: int, body: dict):
        super().__init__(body.get("detail") if isinstance(body, dict) else str(body))
        self.status_code = status_code
        self.body = body if isinstance(body, dict) else {"detail": body}

    @property
    def conflict(self) -> bool:
        return self.status_code == 409


class NegotiationSession:
    """Explicitly owned connection to the negotiation backend.

    ``api`` is an ``httpx.Client`` pointed at the backend; ``headers`` carry
    the actor's credentials when the client itself does not. ``connect``
    returns a context manager yielding a realtime connection with
    ``send_json``/``receive_json``. Nothing here is global:
    whoever builds the session connects, joins and disconnects it.
    """

    def __init__(
        self,
        api: httpx.Client,
        connect: Callable[[], ContextManager],
        timeout: float = None,
        user_id: int = None,
        headers: dict = None,
    ):
        self.api = api
        self.headers = dict(headers or {})
        self._connect = connect
        self.timeout = settings.CLIENT_TIMEOUT_SECONDS if timeout is None else timeout
        self.user_id = user_id
        self.view: Optional[OrderView] = None
        self._stack: Optional[ExitStack] = None
        self._conn = None
        self._buffer = deque()

    # --- connection lifecycle ---

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> "NegotiationSession":
        if self._conn is not None:
            return self
        stack = ExitStack()
        try:
            self._conn = stack.enter_context(self._connect())
        except Exception:
            stack.close()
            raise
        self._stack = stack
        return self

    def disconnect(self) -> None:
        stack, self._stack, self._conn = self._stack, None, None
        self._buffer.clear()
        if stack is not None:
            stack.close()

    def __enter__(self):
        return self.connect()

    def __exit__(self, *exc):
        self.disconnect()
        return False

    def _send(self, event: str, data: dict) -> None:
        if self._conn is None:
            raise RuntimeError("Session is not connected")
        self._conn.send_json({"event": event, "data": data})

    @contextmanager
    def joined(self, order_id: int):
        """Join the order room for the duration of the block.

        The room is left on every exit path, errors included.
        """
        room = f"order_{order_id}"
        self._send("joinOrder", {"orderId": order_id})
        try:
            self._await_ack(room)
            self.view = OrderView(order_id=order_id)
            self.reload()
            yield self
        finally:
            if self._conn is not None:
                try:
                    self._send("leaveOrder", {"orderId": order_id})
                except Exception as e:
                    logger.info("Could not leave %s cleanly: %s", room, e)
            self.view = None

    # Wait for the join acknowledgement; other frames are kept for receive()
    def _await_ack(self, room: str) -> None:
        while True:
            frame = self._conn.receive_json()
            event, data = frame.get("event"), frame.get("data") or {}
            if event == "joined" and data.get("room") == room:
                return
            if event == "error":
                raise ActionRejected(403, data)
            self._buffer.append(frame)

    def receive(self) -> dict:
        """Next server event, already applied to ``view``.

        Join/leave acknowledgements are skipped.
        """
        while True:
            frame = self._buffer.popleft() if self._buffer else self._conn.receive_json()
            event = frame.get("event")
            if event in ("joined", "left"):
                continue
            if event in SERVER_EVENTS and self.view is not None:
                self.view = reduce(self.view, ServerEvent(event, frame.get("data") or {}))
            return frame

    def typing(self, is_typing: bool = True) -> None:
        self._send("typing", {"orderId": self.view.order_id, "isTyping": is_typing})

    # --- REST calls with optimistic overlays ---

    def _request(self, method: str, url: str, **kwargs) -> dict:
        response = self.api.request(method, url, headers=self.headers or None, timeout=self.timeout, **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"detail": response.text}
            raise ActionRejected(response.status_code, body)
        return response.json()

    def reload(self) -> OrderView:
        order_id = self.view.order_id
        order = self._request("GET", f"/orders/{order_id}")
        messages = self._request("GET", f"/orders/{order_id}/messages")
        self.view = reduce(self.view, Reloaded(order=order, messages=tuple(messages)))
        return self.view

    def reload_if_needed(self) -> OrderView:
        if self.view is not None and self.view.needs_reload:
            return self.reload()
        return self.view

    # Run a REST call under an overlay; a conflict triggers exactly one reload
    def _with_overlay(self, key: str, call):
        try:
            result = call()
        except ActionRejected as e:
            self.view = reduce(self.view, ActionFailed(key, conflict=e.conflict))
            if e.conflict:
                logger.info("Server rejected %s with %s; reloading", key, e.body.get("error"))
                self.reload()
            raise
        except httpx.HTTPError:
            self.view = reduce(self.view, ActionFailed(key))
            raise
        return result

    def send_message(self, content: str) -> dict:
        client_ref = uuid.uuid4().hex
        key = message_key(client_ref)
        self.view = reduce(self.view, LocalMessage(client_ref=client_ref, content=content, sender_id=self.user_id))
        message = self._with_overlay(key, lambda: self._request(
            "POST", f"/orders/{self.view.order_id}/messages", json={"content": content, "clientRef": client_ref},
        ))
        self.view = reduce(self.view, ActionConfirmed(key, message=message))
        return message

    def accept_quotation(self, message_id: int, **terms) -> dict:
        key = quotation_key(message_id)
        self.view = reduce(self.view, LocalDecision(message_id=message_id, status="accepted"))
        result = self._with_overlay(key, lambda: self._request(
            "PUT", f"/orders/{self.view.order_id}/quotation/{message_id}/accept", json=terms or None,
        ))
        self.view = reduce(self.view, ActionConfirmed(key))
        return result

    def reject_quotation(self, message_id: int, reason: str = None) -> dict:
        key = quotation_key(message_id)
        self.view = reduce(self.view, LocalDecision(message_id=message_id, status="rejected", reason=reason))
        message = self._with_overlay(key, lambda: self._request(
            "PUT", f"/orders/{self.view.order_id}/quotation/{message_id}/reject", json={"reason": reason},
        ))
        self.view = reduce(self.view, ActionConfirmed(key, message=message))
        return message

    def submit_quotation(self, **quotation) -> dict:
        message = self._request("POST", f"/orders/{self.view.order_id}/quotation", json=quotation)
        self.view = reduce(self.view, ActionConfirmed(quotation_key(message["id"]), message=message))
        return message

    def update_delivery(self, stage: str, **details) -> dict:
        return self._request("PUT", f"/orders/{self.view.order_id}/delivery-status", json={"stage": stage, **details})
