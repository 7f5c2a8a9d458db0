from __future__ import annotations

from typing import Any, Optional
from sqlmodel import Session, col, select

from recap.models.base import utcnow
from recap.models.integration import Integration


class IntegrationsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, integration: Integration) -> Integration:
        now = utcnow()
        integration.created_at = now
        integration.updated_at = now
        self.session.add(integration)
        self.session.commit()
        self.session.refresh(integration)
        return integration

    def get(self, integration_id: int, owner_id: str) -> Optional[Integration]:
        statement = select(Integration).where(
            Integration.id == integration_id,
            Integration.owner_id == owner_id,
        )
        return self.session.exec(statement).first()

    def list_by_owner(self, owner_id: str) -> list[Integration]:
        statement = (
            select(Integration)
            .where(Integration.owner_id == owner_id)
            .order_by(col(Integration.created_at).desc(), col(Integration.id).desc())
        )
        return list(self.session.exec(statement))

    def update(self, integration_id: int, **fields: Any) -> Optional[Integration]:
        integration = self.session.get(Integration, integration_id)
        if integration is None:
            return None
        for key, value in fields.items():
            setattr(integration, key, value)
        integration.updated_at = utcnow()
        self.session.add(integration)
        self.session.commit()
        self.session.refresh(integration)
        return integration

    def delete(self, integration_id: int, owner_id: str) -> bool:
        integration = self.get(integration_id, owner_id)
        if integration is None:
            return False
        self.session.delete(integration)
        self.session.commit()
        return True
