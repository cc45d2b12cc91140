"""Authentication service - JWT token handling for agent owners"""

from datetime import datetime, timedelta
from typing import Optional
import uuid

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from agentforge.config import settings
from agentforge.db.models import User


def create_access_token(user_id: str) -> str:
    """Create a JWT access token"""
    expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": datetime.utcnow(),
        "jti": str(uuid.uuid4()),  # Unique token ID
    }
    encoded_jwt = jwt.encode(
        to_encode,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm
    )
    return encoded_jwt


def decode_access_token(token: str) -> Optional[str]:
    """Decode a JWT token and return the user ID"""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None
    return payload.get("sub")


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    return await db.get(User, user_id)


async def get_user_by_wallet(db: AsyncSession, wallet_address: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.wallet_address == wallet_address.lower())
    )
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    email: Optional[str] = None,
    name: Optional[str] = None,
    wallet_address: Optional[str] = None,
) -> User:
    """Create an owner account. Wallet addresses are stored lowercased."""
    user = User(
        email=email,
        name=name,
        wallet_address=wallet_address.lower() if wallet_address else None,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user
