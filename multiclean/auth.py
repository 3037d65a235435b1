import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session

from .config import JWT_ALGORITHM, SECRET_KEY
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

security = HTTPBearer()


def decode_session_token(token: str) -> dict:
    """Verify a session token signed by the auth service and return its claims"""
    try:
        payload = jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"⚠️ Invalid session token: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e

    if payload.get("userId") is None:
        logger.warning("⚠️ Session token has no userId claim")
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return payload


def create_session_token(user_id: int) -> str:
    """Sign a session token; used by tests and local tooling"""
    return jose_jwt.encode({"userId": user_id}, SECRET_KEY, algorithm=JWT_ALGORITHM)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    payload = decode_session_token(credentials.credentials)

    user = db.query(User).filter(User.id == payload["userId"]).first()
    if not user:
        logger.warning(f"❌ User {payload['userId']} from token not found")
        raise HTTPException(status_code=401, detail="User not found")
    if user.account_frozen:
        raise HTTPException(status_code=403, detail="Account is frozen")

    logger.debug(f"✅ Authenticated user {user.id} ({user.type})")
    return user
