from papercups_widget.services.conversation_sync import (
    ConversationSynchronizer,
    SyncResult,
)
from papercups_widget.services.identity import IdentityResolver
from papercups_widget.services.presence_tracker import PresenceTracker
from papercups_widget.services.reconciler import MessageReconciler
from papercups_widget.services.visibility import VisibilityGate

__all__ = [
    "ConversationSynchronizer",
    "IdentityResolver",
    "MessageReconciler",
    "PresenceTracker",
    "SyncResult",
    "VisibilityGate",
]
