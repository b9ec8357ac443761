from __future__ import annotations

import asyncio
import inspect
import uuid
from typing import Any, Dict, List, Optional, Tuple, Union

from pakeforge.core.base import PakeForgeManager
from pakeforge.core.event_model import Event, EventHandler, EventSubscription, EventType
from pakeforge.utils.exceptions import EventBusError, ManagerInitializationError, ManagerShutdownError


class EventBusManager(PakeForgeManager):
    """Asynchronous event bus manager for the application.

    A single worker drains the event queue, so subscribers observe events in
    the order they were published.

    Attributes:
        _config_manager: The configuration manager
        _logger: The logger instance
        _max_queue_size: Maximum size of the event queue
        _publish_timeout: Timeout for event publishing
        _subscriptions: Dictionary of event subscriptions
        _event_queue: Queue for pending events
        _running: Flag indicating whether the manager is running
    """

    def __init__(self, config_manager: Any, logger_manager: Any) -> None:
        """Initialize the event bus manager.

        Args:
            config_manager: The configuration manager
            logger_manager: The logging manager
        """
        super().__init__(name='event_bus_manager')
        self._config_manager = config_manager
        self._logger = logger_manager.get_logger('event_bus_manager')

        self._max_queue_size: int = 1000
        self._publish_timeout: float = 5.0

        # Subscriptions are keyed by event_type, then by subscriber_id
        self._subscriptions: Dict[str, Dict[str, EventSubscription]] = {}

        self._event_queue: Optional[asyncio.Queue[Tuple[Event, List[EventSubscription]]]] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._running: bool = False

    async def initialize(self) -> None:
        """Initialize the event bus manager asynchronously.

        Raises:
            ManagerInitializationError: If initialization fails
        """
        try:
            event_bus_config = await self._config_manager.get('event_bus_manager', {}) or {}

            self._max_queue_size = event_bus_config.get('max_queue_size', 1000)
            self._publish_timeout = event_bus_config.get('publish_timeout', 5.0)

            self._event_queue = asyncio.Queue(maxsize=self._max_queue_size)

            self._running = True
            self._worker_task = asyncio.create_task(self._event_worker(), name='event-worker')

            self._logger.info('Event Bus Manager initialized')
            self._initialized = True
            self._healthy = True

        except Exception as e:
            self._logger.error(f'Failed to initialize Event Bus Manager: {str(e)}')
            raise ManagerInitializationError(
                f'Failed to initialize EventBusManager: {str(e)}',
                manager_name=self.name
            ) from e

    async def _event_worker(self) -> None:
        """Worker task for processing events from the queue."""
        self._logger.debug('Event worker started')

        while self._running:
            event, subscriptions = await self._event_queue.get()
            try:
                await self._dispatch(event, subscriptions)
            finally:
                self._event_queue.task_done()

        self._logger.debug('Event worker stopped')

    async def _dispatch(self, event: Event, subscriptions: List[EventSubscription]) -> None:
        """Deliver an event to each subscription in subscription order.

        Args:
            event: The event to deliver
            subscriptions: List of subscriptions to notify
        """
        for subscription in subscriptions:
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(
                    f'Error in event handler for {event.event_type}: {str(e)}',
                    extra={
                        'event_id': event.event_id,
                        'subscription_id': subscription.subscriber_id,
                        'error': str(e)
                    }
                )

    async def publish(
            self,
            event_type: Union[EventType, str],
            source: str,
            payload: Optional[Dict[str, Any]] = None,
            correlation_id: Optional[str] = None,
            synchronous: bool = False
    ) -> str:
        """Publish an event asynchronously.

        Args:
            event_type: Type of the event
            source: Source of the event
            payload: Event data
            correlation_id: ID for correlating related events
            synchronous: Whether to deliver the event before returning

        Returns:
            The event ID

        Raises:
            EventBusError: If publishing fails
        """
        if not self._initialized:
            raise EventBusError(
                'Cannot publish events before initialization',
                event_type=str(event_type)
            )

        event = Event.create(
            event_type=event_type,
            source=source,
            payload=payload or {},
            correlation_id=correlation_id
        )

        matching_subs = self._get_matching_subscriptions(event)

        if not matching_subs:
            return event.event_id

        if synchronous:
            await self._dispatch(event, matching_subs)
        else:
            try:
                await asyncio.wait_for(
                    self._event_queue.put((event, matching_subs)),
                    timeout=self._publish_timeout
                )
            except asyncio.TimeoutError as e:
                self._logger.error(
                    f'Event queue is full, cannot publish event {event.event_type}',
                    extra={'event_id': event.event_id}
                )
                raise EventBusError(
                    f'Event queue is full, cannot publish event {event.event_type}',
                    event_type=event.event_type
                ) from e

        return event.event_id

    def _get_matching_subscriptions(self, event: Event) -> List[EventSubscription]:
        """Collect the subscriptions that match an event.

        Subscriptions are snapshotted at publish time, so a subscriber added
        later never receives earlier events.
        """
        candidates: List[EventSubscription] = []
        candidates.extend(self._subscriptions.get(event.event_type, {}).values())
        if event.event_type != '*':
            candidates.extend(self._subscriptions.get('*', {}).values())
        return [sub for sub in candidates if sub.matches_event(event)]

    async def subscribe(
            self,
            event_type: Union[EventType, str],
            callback: EventHandler,
            subscriber_id: Optional[str] = None,
            filter_criteria: Optional[Dict[str, Any]] = None
    ) -> str:
        """Subscribe to an event type.

        Args:
            event_type: Type of events to subscribe to ('*' for all)
            callback: Callback function or coroutine for handling events
            subscriber_id: ID of the subscriber (generated if not provided)
            filter_criteria: Optional payload values an event must carry

        Returns:
            The subscriber ID

        Raises:
            EventBusError: If the bus is not initialized
        """
        if not self._initialized:
            raise EventBusError(
                'Cannot subscribe to events before initialization',
                event_type=str(event_type)
            )

        event_type_str = event_type.value if isinstance(event_type, EventType) else event_type
        if subscriber_id is None:
            subscriber_id = str(uuid.uuid4())

        subscription = EventSubscription(
            subscriber_id=subscriber_id,
            event_type=event_type_str,
            callback=callback,
            filter_criteria=filter_criteria
        )
        self._subscriptions.setdefault(event_type_str, {})[subscriber_id] = subscription

        self._logger.debug(
            f'Subscription added for {event_type_str}',
            extra={'subscriber_id': subscriber_id, 'has_filter': filter_criteria is not None}
        )

        return subscriber_id

    async def unsubscribe(
            self,
            subscriber_id: str,
            event_type: Optional[Union[EventType, str]] = None
    ) -> bool:
        """Unsubscribe from events.

        Args:
            subscriber_id: ID of the subscriber
            event_type: Optional specific event type to unsubscribe from

        Returns:
            True if unsubscribed, False otherwise
        """
        if not self._initialized:
            return False

        if event_type is not None:
            event_types = [event_type.value if isinstance(event_type, EventType) else event_type]
        else:
            event_types = list(self._subscriptions.keys())

        removed = False
        for evt_type in event_types:
            subs = self._subscriptions.get(evt_type)
            if subs and subscriber_id in subs:
                del subs[subscriber_id]
                removed = True
                if not subs:
                    del self._subscriptions[evt_type]

        return removed

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        if self._event_queue is not None:
            await self._event_queue.join()

    async def shutdown(self) -> None:
        """Shut down the event bus manager.

        Raises:
            ManagerShutdownError: If shutdown fails
        """
        if not self._initialized:
            return

        try:
            self._running = False
            if self._worker_task is not None:
                self._worker_task.cancel()
                try:
                    await self._worker_task
                except asyncio.CancelledError:
                    pass
                self._worker_task = None

            self._subscriptions.clear()
            self._initialized = False
            self._healthy = False
            self._logger.info('Event Bus Manager shut down')
        except Exception as e:
            raise ManagerShutdownError(
                f'Failed to shut down EventBusManager: {str(e)}',
                manager_name=self.name
            ) from e

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status.update({
            'subscriptions': sum(len(subs) for subs in self._subscriptions.values()),
            'queue_size': self._event_queue.qsize() if self._event_queue else 0,
            'running': self._running,
        })
        return status
