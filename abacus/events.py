"""Change events and the bounded fan-out broadcast sink."""

import asyncio
import logging
from typing import Literal, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ParticipantsUpdate(BaseModel):
    type: Literal["participants_update"] = "participants_update"
    tournament_id: str


class AvailabilityUpdate(BaseModel):
    type: Literal["availability_update"] = "availability_update"
    tournament_id: str
    round_id: str


class DrawUpdated(BaseModel):
    type: Literal["draw_updated"] = "draw_updated"
    tournament_id: str
    round_id: str


class ResultsUpdated(BaseModel):
    """Confirmed results changed; standings computed earlier are stale."""

    type: Literal["results_updated"] = "results_updated"
    tournament_id: str
    round_id: str


Event = Union[ParticipantsUpdate, AvailabilityUpdate, DrawUpdated, ResultsUpdated]


class Subscription:
    """One subscriber's bounded queue of events."""

    def __init__(self, bus: "EventBus", capacity: int, tournament_id: str | None = None):
        self.bus = bus
        self.tournament_id = tournament_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self.dropped = 0

    def wants(self, event: Event) -> bool:
        return self.tournament_id is None or event.tournament_id == self.tournament_id

    async def get(self) -> Event:
        return await self.queue.get()

    def close(self) -> None:
        self.bus.unsubscribe(self)


class EventBus:
    """Fan events out to every subscriber without ever failing the publisher.

    A subscriber whose queue is full misses the event; the miss is logged.
    Publish only after the transaction that produced the change committed.
    """

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self.subscriptions: list[Subscription] = []
        self.published = 0

    def subscribe(self, tournament_id: str | None = None) -> Subscription:
        subscription = Subscription(self, self.capacity, tournament_id)
        self.subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)

    def publish(self, event: Event) -> None:
        self.published += 1
        for subscription in list(self.subscriptions):
            if not subscription.wants(event):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning(f"Subscriber queue full, dropped {event.type} event")
            except Exception as e:
                logger.warning(f"Failed to deliver {event.type} event: {e}")
