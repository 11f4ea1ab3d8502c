from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.database import get_db
from stocktake.core.security import verify_access_token
from stocktake.core.permissions import Actor


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Dependency to get the calling actor.

    Tokens are issued by the identity provider; the ``sub`` claim is the
    actor id and the ``role`` claim its role.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    verified = verify_access_token(credentials.credentials)
    if verified is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    user_id, role = verified
    try:
        actor_id = uuid.UUID(user_id)
    except ValueError:
        logger.warning(f"Invalid user_id in token: {user_id}")
        raise credentials_exception

    return Actor(id=actor_id, role=role)


# Type aliases for cleaner dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DB = Annotated[AsyncSession, Depends(get_db)]
