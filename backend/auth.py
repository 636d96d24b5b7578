"""
API route protection.

Every tenant-facing route depends on protect_api_route, which resolves the
caller from an "Authorization: Bearer <token>" header and rejects the
request before any tenant data is touched:

1. Missing, malformed or unknown token -> 401
2. Disabled or deleted account -> 403
3. Account without a tenant (and not a super admin) -> 403
"""
import hashlib
import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from database import get_db
from models import User, UserStatus

logger = logging.getLogger(__name__)

# auto_error=False so missing or non-bearer credentials get our 401 body
bearer_scheme = HTTPBearer(auto_error=False)


def hash_api_token(token: str) -> str:
    """Tokens are stored as sha256 hex digests, never in clear."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_api_token() -> str:
    return secrets.token_urlsafe(32)


def protect_api_route(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    """FastAPI dependency returning the authenticated, active user."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = db.query(User).filter(User.api_token_hash == hash_api_token(credentials.credentials)).first()
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if user.status in (UserStatus.disabled.value, UserStatus.deleted.value):
        logger.info("Rejected request from deactivated user %s", user.id)
        raise HTTPException(
            status_code=403,
            detail="Your account has been deactivated. Please contact your administrator."
        )

    if not user.tenant_id and not user.is_super_admin:
        logger.warning("User %s has no tenant membership", user.id)
        raise HTTPException(status_code=403, detail="You are not a member of any organization")

    return user
