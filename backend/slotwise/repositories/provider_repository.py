# backend/slotwise/repositories/provider_repository.py
"""Provider and service lookups."""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.provider import Provider
from ..models.service import Service
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProviderRepository(BaseRepository[Provider]):
    def __init__(self, db: Session):
        super().__init__(db, Provider)

    def get_by_slug(self, slug: str) -> Optional[Provider]:
        """Resolve the public booking-page identifier."""
        return self.find_one_by(slug=slug)


class ServiceRepository(BaseRepository[Service]):
    def __init__(self, db: Session):
        super().__init__(db, Service)

    def get_for_provider(self, service_id: str, provider_id: str) -> Optional[Service]:
        """Return the service only when it belongs to ``provider_id``."""
        return self.find_one_by(id=service_id, provider_id=provider_id)

    def list_active(self, provider_id: str) -> List[Service]:
        try:
            return (
                self._build_query()
                .filter(Service.provider_id == provider_id, Service.is_active.is_(True))
                .order_by(Service.name.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing services for provider {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to list services: {str(e)}")
