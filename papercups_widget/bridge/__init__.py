from papercups_widget.bridge.host import (
    HostBridge,
    HostCommand,
    HostEvent,
    InMemoryHostBridge,
)

__all__ = ["HostBridge", "HostCommand", "HostEvent", "InMemoryHostBridge"]
