from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from jose import jwt

from school_fees.core.config import settings


def create_access_token(*, subject: Dict, expires_minutes: Optional[int] = 15) -> str:
    to_encode = subject.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict:
    """Decode and verify a token. Raises jose.JWTError on bad signature or expiry."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
