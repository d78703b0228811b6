from dataclasses import dataclass
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
import httpx
from typing import Annotated

from clerk_backend_api import Clerk
from clerk_backend_api.security.types import AuthenticateRequestOptions
from clerk_backend_api.models import ClerkBaseError

from ..config import settings
from ..database import get_async_db
from ..error_handlers import ForbiddenException
from ..logging_config import get_logger
from ..users.models import User, UserRole, SubscriptionTier

logger = get_logger(__name__)

clerk_client = Clerk(bearer_auth=settings.CLERK_SECRET_KEY)
bearer_scheme = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: UserRole
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE

    @property
    def is_pro(self) -> bool:
        return self.subscription_tier == SubscriptionTier.PRO


async def get_current_user_id(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)]
) -> str:
    try:
        # Convert FastAPI request to httpx request for Clerk's authenticate_request
        httpx_request = httpx.Request(
            method=request.method,
            url=str(request.url),
            headers=dict(request.headers)
        )

        request_state = clerk_client.authenticate_request(
            httpx_request,
            AuthenticateRequestOptions(
                authorized_parties=[settings.FRONTEND_URL] if settings.FRONTEND_URL else None
            )
        )

        if not request_state.is_signed_in:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Authentication failed: {request_state.reason}",
                headers={"WWW-Authenticate": "Bearer"},
            )

        user_id = request_state.payload.get('sub')

        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token: missing user ID",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return user_id

    except ClerkBaseError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except HTTPException:
        raise
    except Exception:
        logger.error("Unexpected error during authentication", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred during authentication."
        )


async def get_current_user(
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: AsyncSession = Depends(get_async_db)
) -> CurrentUser:
    """Verified identity plus the marketplace role and subscription tier"""
    user = await db.get(User, user_id)
    if user is None:
        raise ForbiddenException("User is not registered")

    # Picked up by the request logging middleware
    request.state.user_id = user.user_id

    return CurrentUser(
        user_id=user.user_id,
        role=user.role,
        subscription_tier=user.subscription_tier,
    )


def require_role(*roles: UserRole):
    """Dependency factory rejecting users outside `roles` with 403"""

    async def checker(user: Annotated[CurrentUser, Depends(get_current_user)]) -> CurrentUser:
        if user.role not in roles:
            logger.warning(
                "Role check failed",
                extra={
                    "user_id": user.user_id,
                    "extra_data": {"role": user.role.value, "required": [r.value for r in roles]}
                }
            )
            raise ForbiddenException(f"Requires role: {', '.join(r.value for r in roles)}")
        return user

    return checker


require_student = require_role(UserRole.STUDENT)
require_admin = require_role(UserRole.ADMIN)
