from papercups_widget.channels.manager import ChannelManager, ChannelRole
from papercups_widget.channels.phoenix import PhoenixChannel, PhoenixSocket
from papercups_widget.channels.presence import Presence

__all__ = [
    "ChannelManager",
    "ChannelRole",
    "PhoenixChannel",
    "PhoenixSocket",
    "Presence",
]
