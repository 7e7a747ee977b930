# backend/studiobook/services/permission_service.py
"""
Server-side authorization.

Every privileged operation re-reads the caller's persisted user record;
claims carried by the caller (token contents, client flags) never grant
administrator rights on their own.
"""

from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenException, UnauthorizedException
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from .base import BaseService


class PermissionService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    def require_authenticated(self, user_id: Optional[str]) -> User:
        if not user_id:
            raise UnauthorizedException("Authentication required")
        user = self.user_repository.get_by_id(user_id, load_relationships=False)
        if user is None or not user.is_active:
            raise UnauthorizedException("Unknown or inactive user", details={"user_id": user_id})
        return user

    def is_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        user = self.user_repository.get_by_id(user_id, load_relationships=False)
        return bool(user and user.is_active and user.is_admin)

    def require_admin(self, user_id: Optional[str]) -> User:
        user = self.require_authenticated(user_id)
        if not user.is_admin:
            self.logger.warning(
                "Admin operation refused", extra={"user_id": user_id}
            )
            raise ForbiddenException("Administrator privileges required")
        return user

    def require_owner_or_admin(self, user_id: Optional[str], booking: Any) -> User:
        user = self.require_authenticated(user_id)
        if booking.user_id != user.id and not user.is_admin:
            raise ForbiddenException(
                "You do not have access to this booking", details={"booking_id": booking.id}
            )
        return user
