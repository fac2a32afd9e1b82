# /gottadoit/models/api.py

from pydantic import BaseModel, Field, model_validator
from typing import Dict, Optional
from datetime import datetime

from gottadoit.models.onboarding import ActionType, NodeType, OnboardingModel

# Pydantic models for API request and response bodies that are not part of the
# stored flow document itself.

class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str

class PublishResponse(BaseModel):
    success: bool = True
    version: int

class NewNodeRequest(OnboardingModel):
    type: NodeType = NodeType.CARD

class NewActionRequest(OnboardingModel):
    type: ActionType = ActionType.GOTO
    target: Optional[str] = None

class NewButtonRequest(OnboardingModel):
    label: str = "New"
    action_id: Optional[str] = None

class DispatchRequest(OnboardingModel):
    # node the user was looking at when pressing the button; rejected if it is no longer current
    node_id: Optional[str] = None
    button_index: Optional[int] = Field(default=None, ge=0)
    action_id: Optional[str] = None

    @model_validator(mode="after")
    def one_target(self):
        if (self.button_index is None) == (self.action_id is None):
            raise ValueError("Provide exactly one of buttonIndex or actionId")
        return self
