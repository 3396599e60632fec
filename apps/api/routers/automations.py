"""Workspace automation settings."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import preset
from services.automations import (
    AutomationType,
    create_automation,
    list_workspace_automations,
    set_automation_enabled,
)

router = APIRouter()


class CreateAutomationRequest(BaseModel):
    workspace_id: str
    type: AutomationType


class UpdateAutomationRequest(BaseModel):
    enabled: bool


@router.get("")
async def list_automations_endpoint(
    workspace_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_workspace_automations(workspace_id, user.id, db)


@router.post("", status_code=201)
async def create_automation_endpoint(
    request: CreateAutomationRequest,
    _rate_limit: None = Depends(preset("automations_create", "AUTOMATIONS")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await create_automation(request.workspace_id, request.type, user.id, db)


@router.patch("/{automation_id}")
async def update_automation_endpoint(
    automation_id: str,
    request: UpdateAutomationRequest,
    _rate_limit: None = Depends(preset("automations_update", "AUTOMATIONS")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await set_automation_enabled(automation_id, request.enabled, user.id, db)
