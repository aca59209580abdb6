"""Explicit widget state shared by the sync services.

The active customer/conversation pair is written only by the
ConversationSynchronizer; the timeline itself lives in MessageReconciler.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from papercups_widget.models.presence import AgentPresenceInfo


@dataclass
class WidgetState:
    customer_id: Optional[str] = None
    conversation_id: Optional[str] = None
    available_agents: List[AgentPresenceInfo] = field(default_factory=list)
    is_sending: bool = False
    is_open: bool = False
    is_transitioning: bool = False
    is_game_mode: bool = False
    should_display_notifications: bool = False
    should_display_branding: bool = False
