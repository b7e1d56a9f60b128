"""
RealtimeNotifier - push committed import events to open owner dashboards.

Events travel through a broker: in-process queues for a single worker, or
Redis pub/sub when several workers serve dashboards. Each subscription
filters the shared stream down to the links owned by its subscriber.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import AsyncIterator, Awaitable, Callable, Deque, Optional, Set

from poi_share.config.settings import RealtimeSettings, RedisSettings, settings
from poi_share.core.exceptions import EventsMissedError, PoiSharingException, TransientNetworkError
from poi_share.schemas.shared_link import ImportEventMessage

logger = logging.getLogger(__name__)

OwnedLinksLoader = Callable[[str], Awaitable[Set[str]]]

_DEDUP_WINDOW = 1024

# Queue marker for a gap in the delivered stream.
_MISSED = object()


class BrokerListener(ABC):
    """One registered listener on the broker's event stream."""

    def __aiter__(self) -> AsyncIterator[ImportEventMessage]:
        return self

    @abstractmethod
    async def __anext__(self) -> ImportEventMessage:
        ...

    @abstractmethod
    async def aclose(self) -> None:
        ...

    def take_missed(self) -> int:
        """Number of events dropped for this listener since the last call."""
        return 0


class ImportEventBroker(ABC):
    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def publish(self, message: ImportEventMessage) -> None:
        ...

    @abstractmethod
    async def listen(self) -> BrokerListener:
        """Register a listener; events published after this returns are delivered to it."""


class _MemoryListener(BrokerListener):
    def __init__(self, broker: "MemoryBroker", maxsize: int):
        self._broker = broker
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.missed = 0

    async def __anext__(self) -> ImportEventMessage:
        if self not in self._broker._listeners and self.queue.empty():
            raise StopAsyncIteration
        return await self.queue.get()

    async def aclose(self) -> None:
        self._broker._listeners.discard(self)

    def take_missed(self) -> int:
        missed, self.missed = self.missed, 0
        return missed


class MemoryBroker(ImportEventBroker):
    """Fan-out over asyncio queues within one process."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._listeners: Set[_MemoryListener] = set()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, message: ImportEventMessage) -> None:
        for listener in list(self._listeners):
            if listener.queue.full():
                # Slow consumer: drop its oldest event and count the gap.
                listener.queue.get_nowait()
                listener.missed += 1
                logger.warning("Realtime listener queue full, dropping oldest event")
            listener.queue.put_nowait(message)

    async def listen(self) -> BrokerListener:
        listener = _MemoryListener(self, self.queue_size)
        self._listeners.add(listener)
        return listener


class _RedisListener(BrokerListener):
    def __init__(self, pubsub, channel: str):
        self._pubsub = pubsub
        self._channel = channel
        self._closed = False

    async def __anext__(self) -> ImportEventMessage:
        from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

        while not self._closed:
            try:
                raw = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisConnectionError, RedisTimeoutError, OSError) as e:
                raise TransientNetworkError("redis", details={"error": str(e)}) from e
            if raw is None or raw.get("type") != "message":
                continue
            try:
                return ImportEventMessage.model_validate_json(raw["data"])
            except ValueError:
                logger.warning(f"Ignoring malformed message on {self._channel}")
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self._channel)
        except Exception as e:
            logger.debug(f"Error unsubscribing from {self._channel}: {e}")
        finally:
            await self._pubsub.aclose()


class RedisBroker(ImportEventBroker):
    """Redis pub/sub transport so every worker sees every import event."""

    def __init__(self, redis_url: str, channel: str, socket_timeout: float = 5.0, client=None):
        self.redis_url = redis_url
        self.channel = channel
        self.socket_timeout = socket_timeout
        self._client = client

    async def start(self) -> None:
        if self._client is None:
            from redis import asyncio as aioredis

            self._client = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
                health_check_interval=30,
            )
            logger.info(f"Realtime broker using Redis channel '{self.channel}'")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def publish(self, message: ImportEventMessage) -> None:
        from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

        await self.start()
        try:
            await self._client.publish(self.channel, message.model_dump_json())
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise TransientNetworkError("redis", details={"error": str(e)}) from e

    async def listen(self) -> BrokerListener:
        from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

        await self.start()
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            await pubsub.aclose()
            raise TransientNetworkError("redis", details={"error": str(e)}) from e
        return _RedisListener(pubsub, self.channel)


class ImportEventSubscription:
    """
    Cancellable stream of import events for one owner.

    The set of owned link ids is loaded when the subscription opens and
    reloaded whenever an event for an unknown link shows up, so links created
    later are picked up without resubscribing. Broker failures reconnect with
    exponential backoff; duplicate event ids are dropped.

    When events may have been lost (a full listener queue, or a reconnect)
    iteration raises :class:`EventsMissedError` once; the subscription stays
    usable and the caller should reload its state from the database.
    """

    def __init__(
        self,
        owner_id: str,
        broker: ImportEventBroker,
        owned_links_loader: OwnedLinksLoader,
        realtime: RealtimeSettings,
    ):
        self.owner_id = owner_id
        self.broker = broker
        self.load_owned_links = owned_links_loader
        self.realtime = realtime
        self.owned_link_ids: Set[str] = set()
        self._foreign_link_ids: Set[str] = set()
        self._seen_order: Deque[str] = deque(maxlen=_DEDUP_WINDOW)
        self._seen: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._listener: Optional[BrokerListener] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._ended = False
        self.reconnects = 0

    async def open(self) -> "ImportEventSubscription":
        # Listen before loading ids so nothing published in between is missed.
        self._listener = await self.broker.listen()
        try:
            self.owned_link_ids = set(await self.load_owned_links(self.owner_id))
        except BaseException:
            await self._listener.aclose()
            self._listener = None
            raise
        self._task = asyncio.create_task(self._pump())
        logger.info(
            f"Realtime subscription opened for owner {self.owner_id}",
            extra={"owner_id": self.owner_id, "links": len(self.owned_link_ids)},
        )
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ended(self) -> bool:
        """True once the stream has stopped delivering events."""
        return self._closed or self._ended

    async def _pump(self) -> None:
        delay = self.realtime.reconnect_initial_delay
        try:
            while not self._closed:
                try:
                    if self._listener is None:
                        self._listener = await self.broker.listen()
                        self.reconnects += 1
                        logger.info(f"Realtime subscription for {self.owner_id} reconnected")
                        # Events published while disconnected are gone.
                        await self._queue.put(_MISSED)
                    async for message in self._listener:
                        delay = self.realtime.reconnect_initial_delay
                        if self._listener.take_missed():
                            await self._queue.put(_MISSED)
                        if await self._accepts(message) and self._first_delivery(message.event.id):
                            await self._queue.put(message)
                    if self._closed:
                        break
                    # Listener ended without an error; open a fresh one.
                    raise TransientNetworkError("realtime", details={"reason": "stream ended"})
                except TransientNetworkError as e:
                    if self._listener is not None:
                        await self._listener.aclose()
                        self._listener = None
                    logger.warning(
                        f"Realtime stream interrupted, retrying in {delay:.1f}s: {e.message}",
                        extra={"owner_id": self.owner_id},
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.realtime.reconnect_max_delay)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                f"Realtime subscription for {self.owner_id} failed",
                extra={"owner_id": self.owner_id},
            )
            self._ended = True
            self._queue.put_nowait(None)

    async def _accepts(self, message: ImportEventMessage) -> bool:
        link_id = message.event.shared_link_id
        if link_id in self.owned_link_ids:
            return True
        if link_id in self._foreign_link_ids:
            return False
        try:
            self.owned_link_ids = set(await self.load_owned_links(self.owner_id))
        except PoiSharingException as e:
            logger.warning(f"Could not refresh owned links for {self.owner_id}: {e.message}")
            return False
        if link_id in self.owned_link_ids:
            return True
        self._foreign_link_ids.add(link_id)
        return False

    def _first_delivery(self, event_id: str) -> bool:
        if event_id in self._seen:
            return False
        if len(self._seen_order) == self._seen_order.maxlen:
            self._seen.discard(self._seen_order[0])
        self._seen_order.append(event_id)
        self._seen.add(event_id)
        return True

    def __aiter__(self) -> "ImportEventSubscription":
        return self

    async def __anext__(self) -> ImportEventMessage:
        if self.ended and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        if item is _MISSED:
            raise EventsMissedError(self.owner_id)
        return item

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._task is not None:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception(f"Realtime pump for {self.owner_id} failed")
        finally:
            if self._listener is not None:
                listener, self._listener = self._listener, None
                try:
                    await listener.aclose()
                except Exception as e:
                    logger.warning(f"Error closing realtime listener for {self.owner_id}: {e}")
            self._queue.put_nowait(None)
            logger.info(f"Realtime subscription closed for owner {self.owner_id}")

    async def __aenter__(self) -> "ImportEventSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unsubscribe()


class RealtimeNotifier:
    def __init__(
        self,
        broker: ImportEventBroker,
        owned_links_loader: OwnedLinksLoader,
        realtime: Optional[RealtimeSettings] = None,
    ):
        self.broker = broker
        self.owned_links_loader = owned_links_loader
        self.realtime = realtime or settings.realtime

    async def start(self) -> None:
        await self.broker.start()

    async def close(self) -> None:
        await self.broker.close()

    async def publish(self, message: ImportEventMessage) -> None:
        await self.broker.publish(message)

    async def subscribe(self, owner_id: str) -> ImportEventSubscription:
        subscription = ImportEventSubscription(owner_id, self.broker, self.owned_links_loader, self.realtime)
        return await subscription.open()


def create_broker(realtime: RealtimeSettings, redis: RedisSettings) -> ImportEventBroker:
    if realtime.broker == "redis":
        return RedisBroker(redis.url, realtime.channel, socket_timeout=redis.socket_timeout)
    return MemoryBroker(queue_size=realtime.queue_size)
