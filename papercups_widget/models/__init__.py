from papercups_widget.models.customer import CustomerMetadata
from papercups_widget.models.message import Conversation, Message, MessageType
from papercups_widget.models.presence import AgentPresenceInfo

__all__ = [
    "AgentPresenceInfo",
    "Conversation",
    "CustomerMetadata",
    "Message",
    "MessageType",
]
