from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from orgblog.domain.models import EventEnvelope, EventRecord
from orgblog.infra.db import engine
from orgblog.infra.tenant import get_org_id, get_user_id

EventHandler = Callable[[EventEnvelope], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        should_commit = session is None
        if session is None:
            session = Session(engine)
        try:
            record = EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                ts=event.ts,
                actor_id=event.actor_id,
                org_id=event.org_id,
                correlation_id=event.correlation_id,
                payload=event.payload,
            )
            session.add(record)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()

        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        org_id: str | None = None,
        correlation_id: str | None = None,
        session: Session | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            actor_id=actor_id if actor_id is not None else get_user_id(),
            org_id=org_id if org_id is not None else get_org_id(),
            correlation_id=correlation_id,
            payload=payload,
        )
        self.publish(event, session)
        return event


event_bus = EventBus()
