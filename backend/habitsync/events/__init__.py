from .event_bus import EventBus  # noqa: F401
from .event_bus import EventType  # noqa: F401
