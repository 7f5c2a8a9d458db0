from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from recap.deps import get_current_owner, get_session
from recap.models.integration import Integration
from recap.models.integration_settings import (
    IntegrationType,
    deep_merge_dict,
    normalize_integration_settings,
)
from recap.repositories.integrations import IntegrationsRepository


router = APIRouter(prefix="/integrations", tags=["integrations"])


class CreateIntegrationRequest(BaseModel):
    type: IntegrationType
    settings: Dict[str, Any]
    is_enabled: bool = True


class UpdateIntegrationRequest(BaseModel):
    settings: Optional[Dict[str, Any]] = None
    is_enabled: Optional[bool] = None


def _validated(kind: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return normalize_integration_settings(kind, raw)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": "Invalid integration settings", "errors": e.errors(include_url=False, include_context=False)},
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("")
def list_integrations(
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> List[Integration]:
    return IntegrationsRepository(session).list_by_owner(owner_id)


@router.post("")
def create_integration(
    body: CreateIntegrationRequest,
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> Integration:
    integration = Integration(
        owner_id=owner_id,
        type=body.type,
        settings=_validated(body.type, body.settings),
        is_enabled=body.is_enabled,
    )
    return IntegrationsRepository(session).create(integration)


@router.put("/{integration_id}")
def update_integration(
    integration_id: int,
    body: UpdateIntegrationRequest,
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> Integration:
    repo = IntegrationsRepository(session)
    integration = repo.get(integration_id, owner_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration not found")

    changes: Dict[str, Any] = {}
    if body.is_enabled is not None:
        changes["is_enabled"] = body.is_enabled
    if body.settings is not None:
        merged = deep_merge_dict(dict(integration.settings or {}), body.settings)
        changes["settings"] = _validated(integration.type, merged)
    if not changes:
        return integration

    updated = repo.update(integration_id, **changes)
    if updated is None:
        raise HTTPException(status_code=404, detail="Integration not found")
    return updated


@router.delete("/{integration_id}")
def delete_integration(
    integration_id: int,
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> Dict[str, str]:
    if not IntegrationsRepository(session).delete(integration_id, owner_id):
        raise HTTPException(status_code=404, detail="Integration not found")
    return {"message": "Integration deleted successfully"}
