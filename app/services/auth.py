# services/auth.py - Authentication Service
# ============================================================================
#
# Sessions are issued by the identity provider; this service only verifies the
# bearer JWT and resolves the caller.

from typing import Optional
import logging
import jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.models.user import User
from app.core.config import settings
from app.core.exceptions import Unauthenticated, Forbidden

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class AuthService:

    async def get_current_user(self, token: str, db: AsyncSession) -> Optional[User]:
        """Get current user from JWT token"""
        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
            user_id = int(payload.get("sub"))
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.info(f"Rejected bearer token: {e}")
            return None

        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()


def check_auth(user: Optional[User]) -> User:
    if user is None:
        raise Unauthenticated()
    return user


def check_organization(user: Optional[User]) -> User:
    """Organization-scoped operations need a caller that belongs to one"""
    check_auth(user)
    if user.organization_id is None:
        raise Forbidden("User does not belong to an organization")
    return user
