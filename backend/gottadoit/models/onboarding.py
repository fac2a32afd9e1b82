# /gottadoit/models/onboarding.py

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

# Wire models for the onboarding flow document and the per-user progress record.
# Python attributes are snake_case; the JSON stored in MongoDB and exchanged with
# the frontend uses camelCase (actionId, dbType, currentNodeId, completedNodes).


class OnboardingModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NodeType(str, Enum):
    FLOW = "flow"
    CARD = "card"


class ActionType(str, Enum):
    GOTO = "goto"
    ACKNOWLEDGE = "acknowledge"
    DOWNLOAD = "download"
    API = "api"
    DB = "db"


class GotoAction(OnboardingModel):
    id: str
    type: Literal["goto"] = "goto"
    target: str = ""


class AcknowledgeAction(OnboardingModel):
    id: str
    type: Literal["acknowledge"] = "acknowledge"


class DownloadAction(OnboardingModel):
    id: str
    type: Literal["download"] = "download"
    target: str = ""


class ApiAction(OnboardingModel):
    id: str
    type: Literal["api"] = "api"
    target: str = ""
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        if not v:
            return "GET"
        return str(v).upper()


class DbAction(OnboardingModel):
    """
    Forwards a query to the database proxy. The query is opaque to the engine;
    `operation` names a pre-registered query instead of carrying free text.
    """
    id: str
    type: Literal["db"] = "db"
    db_type: Literal["mongo", "postgres", "mysql"] = "mongo"
    query: Optional[str] = None
    operation: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)


ActionDef = Annotated[
    Union[GotoAction, AcknowledgeAction, DownloadAction, ApiAction, DbAction],
    Field(discriminator="type"),
]

action_adapter: TypeAdapter = TypeAdapter(ActionDef)


class ButtonDef(OnboardingModel):
    label: str = ""
    action_id: Optional[str] = None


class FlowNode(OnboardingModel):
    """One node of an onboarding flow. `flow` nodes group children, `card` nodes carry content."""
    id: str = Field(..., min_length=1)
    title: str = ""
    type: NodeType = NodeType.CARD
    children: List["FlowNode"] = Field(default_factory=list)
    content: Optional[str] = None
    actions: List[ActionDef] = Field(default_factory=list)
    buttons: List[ButtonDef] = Field(default_factory=list)
    static: Optional[Any] = None

    def find_action(self, action_id: Optional[str]) -> Optional[ActionDef]:
        if not action_id:
            return None
        for action in self.actions:
            if action.id == action_id:
                return action
        return None


def _dedupe(node_ids: List[str]) -> List[str]:
    seen = set()
    result = []
    for node_id in node_ids:
        if node_id not in seen:
            seen.add(node_id)
            result.append(node_id)
    return result


class UserProgressRecord(OnboardingModel):
    """Per (organization, user) pointer into the flow plus the nodes already passed."""
    user_id: str
    current_node_id: str
    completed_nodes: List[str] = Field(default_factory=list)
    progress: Dict[str, float] = Field(default_factory=dict)
    version: int = 0

    @field_validator("completed_nodes")
    @classmethod
    def completed_nodes_are_a_set(cls, v: List[str]) -> List[str]:
        return _dedupe(v)


class ProgressPatch(OnboardingModel):
    """Shallow partial update of a progress record. `completed_nodes` replaces the whole set."""
    current_node_id: Optional[str] = None
    completed_nodes: Optional[List[str]] = None
    progress: Optional[Dict[str, float]] = None

    @field_validator("completed_nodes")
    @classmethod
    def completed_nodes_are_a_set(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _dedupe(v) if v is not None else v

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)

    def is_empty(self) -> bool:
        return not self.changes()


class EffectKind(str, Enum):
    DOWNLOAD = "download"
    HTTP = "http"
    DB_PROXY = "db_proxy"


class Effect(OnboardingModel):
    """External side effect requested by an action. Executed best-effort, never fed back into progress."""
    kind: EffectKind
    action_id: str
    url: Optional[str] = None
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    db_type: Optional[str] = None
    query: Optional[str] = None
    operation: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
