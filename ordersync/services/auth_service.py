from __future__ import annotations
import jwt
from typing import Optional, List
from datetime import datetime, timedelta, timezone
from pydantic import BaseModel
from ordersync.config import settings
from ordersync.utils.logger import get_loggers

logger = get_loggers("AuthService")


class TokenData(BaseModel):
    user_id: str
    tenant_id: str
    email: Optional[str] = None
    scopes: List[str] = []
    token_type: str = "access_token"


class AuthService:
    """Bearer tokens shared with the back office that issues them."""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret_key = secret_key or settings.SECRET_KEY
        self.algorithm = algorithm or settings.ALGORITHM
        self.access_token_expire_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))
        to_encode.update({
            "exp": expire,
            "iat": now,
            "nbf": now,
            "type": "access_token",
            "jti": f"{data.get('user_id')}_{int(now.timestamp())}"
        })
        encoded_jwt = jwt.encode(
            to_encode, self.secret_key, algorithm=self.algorithm)
        logger.info(f"Access token created for user: {data.get('user_id')}")
        return encoded_jwt

    def verify_token(self, token: str, expected_type: str = "access_token") -> Optional[TokenData]:
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": True}
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Token signature expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        if payload.get("type") != expected_type:
            logger.warning(f"Invalid token type: {payload.get('type')}")
            return None
        if not all(payload.get(k) for k in ("user_id", "tenant_id")):
            logger.warning("Invalid token structure")
            return None
        return TokenData(
            user_id=str(payload["user_id"]),
            tenant_id=str(payload["tenant_id"]),
            email=payload.get("email"),
            scopes=payload.get("scopes", []),
            token_type=payload.get("type", "access_token")
        )
