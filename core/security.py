from datetime import datetime, timedelta,timezone
from typing import Optional, Union, Any
from jose import jwt
from core.config import JWT_SECRET_KEY,JWT_ALGORITHM,ACCESS_TOKEN_EXPIRE_MINUTES


def create_access_token(
    subject: Union[str, Any],
    payload: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=int(ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": str(subject),
        "exp": expire,
        **payload
    }

    encoded_jwt = jwt.encode(
        to_encode,
        str(JWT_SECRET_KEY),
        algorithm=str(JWT_ALGORITHM)
    )
    return encoded_jwt


def decode_access_token(token: str) -> dict:
    # raises jose.JWTError on bad signature or expiry
    return jwt.decode(
        token,
        JWT_SECRET_KEY,
        algorithms=[JWT_ALGORITHM]
    )
