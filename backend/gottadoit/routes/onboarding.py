# /gottadoit/routes/onboarding.py

from typing import Annotated, Optional
from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from gottadoit.config.settings import settings
from gottadoit.dependencies.org import get_org_id, get_user_id
from gottadoit.errors import FlowNotFound
from gottadoit.models.api import (
    APIResponse, DispatchRequest, NewActionRequest, NewButtonRequest, NewNodeRequest, PublishResponse
)
from gottadoit.models.onboarding import FlowNode, ProgressPatch
from gottadoit.services.onboarding_service import onboarding_service
from gottadoit.utils.rate_limiter import EDITOR_LIMIT, limiter
from gottadoit.workflows.tree import FlowTree

# Onboarding endpoints, namespaced per organization. The four flow/user-state
# endpoints keep the bare JSON contract the frontend already consumes; runtime
# and editor endpoints answer with the APIResponse envelope.
router = APIRouter(
    prefix="/orgs/{org_id}",
    tags=["Onboarding"]
)

ExpectedVersion = Annotated[
    Optional[int], Query(ge=0, description="Only write if the stored version still matches")
]


def _flow_response(tree: FlowTree, version: int, message: str) -> APIResponse:
    return APIResponse(
        success=True,
        message=message,
        data={"flow": tree.to_json_dict(), "version": version},
        version=settings.api_version
    )


# ==================== Flow document ====================

@router.get("/onboarding-flow")
async def get_onboarding_flow(org_id: str = Depends(get_org_id)):
    """The organization's published flow tree."""
    loaded = await onboarding_service.flows.get_flow(org_id)
    if loaded is None:
        raise FlowNotFound(org_id)
    tree, version = loaded
    return JSONResponse(tree.to_json_dict(), headers={"X-Flow-Version": str(version)})


@router.post("/onboarding-flow", response_model=PublishResponse)
@limiter.limit(EDITOR_LIMIT)
async def publish_onboarding_flow(
    request: Request,
    flow: FlowNode = Body(...),
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    """Replace the organization's flow wholesale (last writer wins unless expected_version is given)."""
    tree = FlowTree.from_document(flow, strict=True)
    version = await onboarding_service.flows.publish(org_id, tree, expected_version=expected_version)
    return PublishResponse(success=True, version=version)


# ==================== User state ====================

@router.get("/onboarding-user-state/{user_id}")
async def get_onboarding_user_state(org_id: str = Depends(get_org_id), user_id: str = Depends(get_user_id)):
    """Stored progress record, or null if the user never started onboarding."""
    record = await onboarding_service.progress.get(org_id, user_id)
    return record.to_json_dict() if record else None


@router.post("/onboarding-user-state/{user_id}")
async def save_onboarding_user_state(
    patch: ProgressPatch = Body(...),
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id),
    user_id: str = Depends(get_user_id)
):
    """Merge a partial (or full) progress record into the stored one."""
    record = await onboarding_service.progress.apply_partial(org_id, user_id, patch, expected_version=expected_version)
    return {"success": True, "state": record.to_json_dict()}


# ==================== Runtime ====================

@router.get("/onboarding/{user_id}/current", response_model=APIResponse)
async def get_current_step(org_id: str = Depends(get_org_id), user_id: str = Depends(get_user_id)):
    """Current step for the user, creating their progress record on first access."""
    view = await onboarding_service.current_view(org_id, user_id)
    messages = {
        "ok": "Current step resolved",
        "step_not_found": "Cannot resolve the current onboarding step",
        "flow_not_found": "No onboarding flow has been published",
    }
    return APIResponse(
        success=view["status"] == "ok",
        message=messages[view["status"]],
        data={
            "status": view["status"],
            "node": view["node"].to_json_dict() if view["node"] else None,
            "state": view["record"].to_json_dict(),
            "completedCount": view["completed_count"],
        },
        version=settings.api_version
    )


@router.post("/onboarding/{user_id}/dispatch", response_model=APIResponse)
async def dispatch_button(
    background_tasks: BackgroundTasks,
    payload: DispatchRequest = Body(...),
    org_id: str = Depends(get_org_id),
    user_id: str = Depends(get_user_id)
):
    """Press a button on the user's current step."""
    outcome = await onboarding_service.dispatch(
        org_id, user_id, payload.button_index, node_id=payload.node_id, action_id=payload.action_id
    )
    effect = outcome["effect"]
    if effect is not None:
        background_tasks.add_task(onboarding_service.run_effect, effect)
    return APIResponse(
        success=True,
        message="Action applied" if outcome["applied"] else f"No change: {outcome['reason']}",
        data={
            "applied": outcome["applied"],
            "reason": outcome["reason"],
            "state": outcome["record"].to_json_dict(),
            "effect": effect.to_json_dict() if effect else None,
        },
        version=settings.api_version
    )


# ==================== Editor ====================

@router.post("/onboarding-flow/nodes/{node_id}/children", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def add_child_node(
    request: Request,
    node_id: str,
    payload: NewNodeRequest = Body(default_factory=NewNodeRequest),
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.add_child(org_id, node_id, payload.type, expected_version)
    return _flow_response(tree, version, f"Added {payload.type.value} under {node_id}")


@router.post("/onboarding-flow/nodes/{node_id}/siblings", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def add_sibling_node(
    request: Request,
    node_id: str,
    payload: NewNodeRequest = Body(default_factory=NewNodeRequest),
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.add_sibling(org_id, node_id, payload.type, expected_version)
    return _flow_response(tree, version, f"Added {payload.type.value} next to {node_id}")


@router.put("/onboarding-flow/nodes/{node_id}", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def update_node(
    request: Request,
    node_id: str,
    edited: FlowNode = Body(...),
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.update_node(org_id, node_id, edited, expected_version)
    return _flow_response(tree, version, f"Updated {node_id}")


@router.delete("/onboarding-flow/nodes/{node_id}", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def delete_node(
    request: Request,
    node_id: str,
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.delete_node(org_id, node_id, expected_version)
    return _flow_response(tree, version, f"Deleted {node_id} and its children")


@router.post("/onboarding-flow/nodes/{node_id}/actions", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def add_action(
    request: Request,
    node_id: str,
    payload: NewActionRequest = Body(default_factory=NewActionRequest),
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.add_action(org_id, node_id, payload.type, payload.target, expected_version)
    return _flow_response(tree, version, f"Added {payload.type.value} action to {node_id}")


@router.delete("/onboarding-flow/nodes/{node_id}/actions/{index}", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def remove_action(
    request: Request,
    node_id: str,
    index: int,
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.remove_action(org_id, node_id, index, expected_version)
    return _flow_response(tree, version, f"Removed action {index} from {node_id}")


@router.post("/onboarding-flow/nodes/{node_id}/buttons", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def add_button(
    request: Request,
    node_id: str,
    payload: NewButtonRequest = Body(default_factory=NewButtonRequest),
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.add_button(org_id, node_id, payload.label, payload.action_id, expected_version)
    return _flow_response(tree, version, f"Added button to {node_id}")


@router.delete("/onboarding-flow/nodes/{node_id}/buttons/{index}", response_model=APIResponse)
@limiter.limit(EDITOR_LIMIT)
async def remove_button(
    request: Request,
    node_id: str,
    index: int,
    expected_version: ExpectedVersion = None,
    org_id: str = Depends(get_org_id)
):
    tree, version = await onboarding_service.remove_button(org_id, node_id, index, expected_version)
    return _flow_response(tree, version, f"Removed button {index} from {node_id}")
