"""Client-side sync engine for the Papercups chat widget."""

from papercups_widget.bridge.host import (
    HostBridge,
    HostCommand,
    HostEvent,
    InMemoryHostBridge,
)
from papercups_widget.core.config import Settings, WidgetConfig, get_settings
from papercups_widget.widget import ChatWidget

__version__ = "1.1.2"

__all__ = [
    "ChatWidget",
    "HostBridge",
    "HostCommand",
    "HostEvent",
    "InMemoryHostBridge",
    "Settings",
    "WidgetConfig",
    "get_settings",
]
