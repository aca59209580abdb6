"""Agent availability snapshot entries."""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict


class AgentPresenceInfo(BaseModel):
    """First presence meta of one tracked agent."""

    model_config = ConfigDict(extra="allow")

    user_id: Union[int, str]
    phx_ref: Optional[str] = None
    online_at: Optional[str] = None
