from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .messages import MessageEnvelope

logger = logging.getLogger(__name__)

Handler = Callable[[MessageEnvelope], None]
RequestHandler = Callable[[MessageEnvelope], Dict[str, object]]


def _iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class RuntimeBus:
    """In-process pub/sub and request-reply bus for lab engine events.

    Topics published with ``sticky=True`` keep their last envelope so that a
    late subscriber can ask for it on subscription (live document reads work
    this way: the first delivery is the current value).
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._subscribers: Dict[str, tuple[str, Handler]] = {}
        self._topic_index: Dict[str, set[str]] = {}
        self._request_handlers: Dict[str, RequestHandler] = {}
        self._sticky: Dict[str, MessageEnvelope] = {}

    def subscribe(self, topic: str, handler: Handler, *, replay_sticky: bool = False) -> str:
        sub_id = str(uuid.uuid4())
        with self._lock:
            self._subscribers[sub_id] = (topic, handler)
            self._topic_index.setdefault(topic, set()).add(sub_id)
            last = self._sticky.get(topic) if replay_sticky else None
        if last is not None:
            self._deliver(handler, last.as_replay())
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        with self._lock:
            topic, _ = self._subscribers.pop(sub_id, (None, None))
            if topic and topic in self._topic_index:
                self._topic_index[topic].discard(sub_id)
                if not self._topic_index[topic]:
                    self._topic_index.pop(topic, None)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topic_index.get(topic, ()))

    def register_handler(self, topic: str, handler: RequestHandler) -> None:
        with self._lock:
            self._request_handlers[topic] = handler

    def unregister_handler(self, topic: str) -> None:
        with self._lock:
            self._request_handlers.pop(topic, None)

    def publish(
        self,
        topic: str,
        payload: Optional[Dict[str, object]],
        source: str,
        trace_id: Optional[str] = None,
        *,
        sticky: bool = False,
    ) -> MessageEnvelope:
        envelope = self._build_envelope(topic, payload, source, trace_id, sticky=sticky)
        if sticky:
            with self._lock:
                self._sticky[topic] = envelope
        for handler in self._copy_handlers(topic):
            self._deliver(handler, envelope)
        return envelope

    def last_sticky(self, topic: str) -> Optional[MessageEnvelope]:
        with self._lock:
            return self._sticky.get(topic)

    def clear_sticky(self, topic: Optional[str] = None) -> None:
        with self._lock:
            if topic is None:
                self._sticky.clear()
            else:
                self._sticky.pop(topic, None)

    def request(
        self,
        topic: str,
        payload: Optional[Dict[str, object]],
        source: str,
        timeout_ms: int,
        trace_id: Optional[str] = None,
    ) -> Dict[str, object]:
        handler = self._get_request_handler(topic)
        if handler is None:
            return {"ok": False, "error": "no_handler"}

        envelope = self._build_envelope(topic, payload, source, trace_id, target="request")
        done = threading.Event()
        response: Dict[str, object] = {}

        def _invoke():
            nonlocal response
            try:
                result = handler(envelope) or {}
                if not isinstance(result, dict):
                    response = {"ok": False, "error": "invalid_response"}
                else:
                    response = result
            except Exception as exc:
                logger.error("runtime_bus request handler error on %s: %s", topic, exc)
                response = {"ok": False, "error": "handler_error", "detail": str(exc)}
            finally:
                done.set()

        thread = threading.Thread(target=_invoke, name=f"bus-request-{topic}", daemon=True)
        thread.start()

        if not done.wait(timeout_ms / 1000):
            logger.warning("runtime_bus request timed out on %s after %sms", topic, timeout_ms)
            return {"ok": False, "error": "timeout"}
        return response

    def _deliver(self, handler: Handler, envelope: MessageEnvelope) -> None:
        try:
            handler(envelope)
        except Exception as exc:  # pragma: no cover - defensive
            logger.error("runtime_bus publish handler error on %s: %s", envelope.type, exc)

    def _build_envelope(
        self,
        topic: str,
        payload: Optional[Dict[str, object]],
        source: str,
        trace_id: Optional[str],
        target: Optional[str] = None,
        sticky: bool = False,
    ) -> MessageEnvelope:
        trace = trace_id or str(uuid.uuid4())
        body = payload if isinstance(payload, dict) else {}
        return MessageEnvelope(
            msg_id=str(uuid.uuid4()),
            type=topic,
            timestamp=_iso_timestamp(),
            source=source,
            payload=dict(body),
            trace_id=trace,
            target=target,
            sticky=sticky,
        )

    def _copy_handlers(self, topic: str) -> list[Handler]:
        with self._lock:
            sub_ids = list(self._topic_index.get(topic, ()))
            handlers = [self._subscribers[sid][1] for sid in sub_ids if sid in self._subscribers]
        return handlers

    def _get_request_handler(self, topic: str) -> Optional[RequestHandler]:
        with self._lock:
            return self._request_handlers.get(topic)


_GLOBAL_BUS: Optional[RuntimeBus] = None
_GLOBAL_LOCK = threading.Lock()


def get_global_bus() -> RuntimeBus:
    global _GLOBAL_BUS
    with _GLOBAL_LOCK:
        if _GLOBAL_BUS is None:
            _GLOBAL_BUS = RuntimeBus()
    return _GLOBAL_BUS
