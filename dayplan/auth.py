from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from jose import JWTError, jwt
import logging

from . import config
from .errors import InvalidToken, MissingToken

logger = logging.getLogger(__name__)

# Read once at import; never mutated afterwards. The lifespan check in
# dayplan.main refuses to serve requests with the insecure fallback.
SECRET_KEY = config.SECRET_KEY
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = config.ACCESS_TOKEN_EXPIRE_MINUTES

# Header accepted from older JSON clients that do not send a bearer token.
LEGACY_TOKEN_HEADER = "auth-token"

# prefer a pure-Python, widely-available scheme for tests and portability;
# keep bcrypt as a fallback if available.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta
    # RFC 7519 recommends NumericDate (seconds since epoch). Encode as int.
    to_encode = {"sub": str(user_id), "exp": int(expire.timestamp())}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: Optional[str]) -> int:
    """Validate a signed token and return the user id bound to it."""
    if not token:
        raise MissingToken()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info('token rejected: %s', str(e))
        raise InvalidToken()
    sub = payload.get("sub")
    try:
        return int(sub)
    except (TypeError, ValueError):
        logger.info('token rejected: unusable subject %r', sub)
        raise InvalidToken()


async def require_user_id(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> int:
    """Dependency resolving the authenticated user id.

    The bearer Authorization header is authoritative; when it is absent the
    legacy ``auth-token`` header is consulted.
    """
    if not token:
        token = request.headers.get(LEGACY_TOKEN_HEADER)
    return decode_access_token(token)
