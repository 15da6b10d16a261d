import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from chalicelib.constants.constants import EVENT_QUEUE_SIZE
from chalicelib.models import User, Delivery
from chalicelib.utils.data import now_iso
from chalicelib.utils.logger import logger


class EventType(Enum):
    USER_CREATED = 'UserCreated'
    USER_UPDATED = 'UserUpdated'
    DELIVERY_CREATED = 'DeliveryCreated'
    DELIVERY_UPDATED = 'DeliveryUpdated'
    DELIVERY_ASSIGNED = 'DeliveryAssigned'
    DELIVERY_READY = 'DeliveryReady'
    DELIVERY_COMPLETED = 'DeliveryCompleted'


@dataclass(frozen=True)
class Event:
    type: EventType
    entity: Union[User, Delivery]
    timestamp: str

    def to_dict(self):
        entity = self.entity.to_ui() if isinstance(self.entity, User) else self.entity.to_dict()
        key = 'user' if isinstance(self.entity, User) else 'delivery'
        return {'type': self.type.value, key: entity, 'timestamp': self.timestamp}


class Subscription:
    """
    Handle returned by EventBus.subscribe.
    Events are queued per subscriber and handed to the listener by a worker thread,
    a full queue drops its oldest event
    """

    def __init__(self, bus: 'EventBus', listener: Callable[[Event], None], maxsize: int):
        self._bus = bus
        self._listener = listener
        self._queue = deque()
        self._maxsize = maxsize
        self._condition = threading.Condition()
        self._active = True
        self._busy = False
        self.dropped = 0
        self._worker = threading.Thread(
            target=self._run, name=f'event-listener-{getattr(listener, "__name__", "listener")}', daemon=True
        )
        self._worker.start()

    @property
    def active(self) -> bool:
        return self._active

    def offer(self, event: Event):
        with self._condition:
            if not self._active:
                return
            if len(self._queue) >= self._maxsize:
                self._queue.popleft()
                self.dropped += 1
                logger.warning(f'Subscription.offer ::: queue is full, dropped oldest event, {self.dropped=}')
            self._queue.append(event)
            self._condition.notify()

    def unsubscribe(self):
        with self._condition:
            if not self._active:
                return
            self._active = False
            self._queue.clear()
            self._condition.notify_all()
        self._bus._remove(self)

    def join(self, timeout: float = None):
        """ Wait until every queued event was handed to the listener """
        with self._condition:
            return self._condition.wait_for(lambda: not self._queue and not self._busy, timeout=timeout)

    def _run(self):
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._queue or not self._active)
                if not self._active:
                    return
                event = self._queue.popleft()
                self._busy = True
            try:
                self._listener(event)
            except Exception as error:
                logger.exception(f'Subscription._run ::: listener failed on {event.type.value}: {error}')
            finally:
                with self._condition:
                    self._busy = False
                    self._condition.notify_all()


class EventBus:
    """
    In-process publisher of domain events. publish never blocks on a listener
    and never raises because of one. There is no history: a new subscriber sees only later events
    """

    def __init__(self, queue_size: int = EVENT_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscriptions = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable[[Event], None], maxsize: int = None) -> Subscription:
        subscription = Subscription(self, listener, maxsize or self._queue_size)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(f'EventBus.subscribe ::: {len(self._subscriptions)=}')
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event_type: EventType, entity) -> Event:
        event = Event(type=event_type, entity=entity, timestamp=now_iso())
        with self._lock:
            subscriptions = list(self._subscriptions)
        logger.info(f'EventBus.publish ::: {event_type.value} {entity.id=} to {len(subscriptions)} subscribers')
        for subscription in subscriptions:
            subscription.offer(event)
        return event

    def close(self):
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.unsubscribe()
