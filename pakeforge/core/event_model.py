from __future__ import annotations
import dataclasses
import datetime
import enum
import uuid
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, enum.Enum):
    """Standard event types in the system."""
    # System events
    SYSTEM_STARTED = "system/started"

    # Build events
    BUILD_OUTPUT = "build-output"
    BUILD_STATUS = "build/status"

    # Project store events
    PROJECT_SAVED = "project/saved"
    PROJECT_DELETED = "project/deleted"

    # Config events
    CONFIG_CHANGED = "config/changed"


class Event(BaseModel):
    """Event model with type information."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    event_type: str = Field(..., description='The type of the event, used for routing')
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description='Unique identifier for the event')
    timestamp: datetime.datetime = Field(default_factory=datetime.datetime.now,
                                         description='When the event was created')
    source: str = Field(..., description='The source component that generated the event')
    payload: Dict[str, Any] = Field(default_factory=dict, description='The event data')
    correlation_id: Optional[str] = Field(None, description='ID for tracking related events')

    @classmethod
    def create(cls, event_type: Union[EventType, str], source: str,
               payload: Optional[Dict[str, Any]] = None,
               correlation_id: Optional[str] = None) -> Event:
        """Create a new event with the given parameters.

        Args:
            event_type: The type of event (enum or string)
            source: The source component generating the event
            payload: Optional event data
            correlation_id: Optional ID for tracking related events

        Returns:
            A new Event instance
        """
        if isinstance(event_type, EventType):
            event_type = event_type.value

        return cls(
            event_type=event_type,
            source=source,
            payload=payload or {},
            correlation_id=correlation_id
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return self.model_dump(mode='json')

    def __str__(self) -> str:
        return f'Event(type={self.event_type}, id={self.event_id}, source={self.source})'


# Type alias for event handlers
EventHandler = Callable[[Event], Any]


@dataclasses.dataclass
class EventSubscription:
    """Event subscription with typed handler."""
    subscriber_id: str
    event_type: str
    callback: EventHandler
    filter_criteria: Optional[Dict[str, Any]] = None

    def matches_event(self, event: Event) -> bool:
        """Check if event matches this subscription.

        Args:
            event: The event to check

        Returns:
            True if the event matches this subscription
        """
        if event.event_type != self.event_type and self.event_type != '*':
            return False

        if not self.filter_criteria:
            return True

        for key, value in self.filter_criteria.items():
            if key not in event.payload or event.payload[key] != value:
                return False

        return True
