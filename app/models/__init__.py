from .vehicle import Vehicle
from .lead import Lead, LeadMessage
from .platform_event import PlatformEvent, Activity

__all__ = [
    "Vehicle",
    "Lead",
    "LeadMessage",
    "PlatformEvent",
    "Activity",
]
