"""Available-agent tracking fed by presence syncs on the availability room."""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from papercups_widget.models.presence import AgentPresenceInfo
from papercups_widget.state import WidgetState

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Rebuild the available agent list on every presence sync."""

    def __init__(self, state: WidgetState):
        self.state = state

    def handle_sync(self, presences: List[Dict[str, Any]]) -> List[AgentPresenceInfo]:
        agents: List[AgentPresenceInfo] = []
        for presence in presences:
            metas = presence.get("metas") or []
            if not metas:
                continue
            info = metas[0]
            if not isinstance(info, dict) or not info.get("user_id"):
                continue
            try:
                agents.append(AgentPresenceInfo.model_validate(info))
            except ValidationError:
                logger.debug("Skipping malformed presence meta: %s", info)

        # Full replace: agents missing from this sync must disappear
        self.state.available_agents = agents
        return agents
