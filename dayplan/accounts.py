"""Account lifecycle: email verification, registration, login, password reset.

The signup handshake is two-step. ``request_verification_code`` creates (or
refreshes) an unverified user row keyed by email and mails a 6-digit code;
``verify_code`` flips ``is_verified`` but leaves the code in place;
``register`` then sets name and password and clears the code. Password reset
uses a separate code with a longer lifetime that is cleared once used.

All timestamps are absolute UTC instants. ``now`` can be passed explicitly so
expiry boundaries are testable.
"""
from datetime import datetime, timedelta
from typing import Optional, Tuple
import logging

from sqlmodel import select
from sqlalchemy import delete as sqlalchemy_delete

from . import config
from .auth import create_access_token, hash_password, verify_password
from .db import async_session
from .errors import (
    AlreadyVerified,
    CodeExpired,
    DeliveryFailed,
    EmailNotVerified,
    InvalidCode,
    InvalidCredentials,
    InvalidOrExpiredCode,
    MissingFields,
    NotFound,
    UserExists,
    VerificationRequired,
)
from .mailer import Mailer, render_reset_email, render_verification_email
from .models import User
from .utils import as_utc, generate_numeric_code, isoformat_utc, normalize_email, now_utc

logger = logging.getLogger(__name__)

VERIFICATION_CODE_TTL = timedelta(minutes=config.VERIFICATION_CODE_TTL_MINUTES)
RESET_CODE_TTL = timedelta(minutes=config.RESET_CODE_TTL_MINUTES)


def public_user(user: User) -> dict:
    """User view safe to return to clients (no password or code fields)."""
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'isVerified': user.is_verified,
        'createdAt': isoformat_utc(user.created_at),
    }


def _require(**fields) -> None:
    missing = [k for k, v in fields.items() if v is None or (isinstance(v, str) and not v.strip())]
    if missing:
        raise MissingFields(f"Missing required fields: {', '.join(missing)}")


async def _find_user(sess, email: str) -> Optional[User]:
    q = await sess.exec(select(User).where(User.email == email))
    return q.first()


async def _find_or_create_unverified(sess, email: str, code: str, expires: datetime) -> User:
    """Attach a fresh verification code to the record for ``email``.

    Merge policy: an existing (unverified) row keeps its id, name and
    created_at; code and expiry are overwritten and is_verified is forced
    false. A missing row is created with just email, code and expiry.
    """
    user = await _find_user(sess, email)
    if user is None:
        user = User(email=email)
    user.verification_code = code
    user.code_expires = expires
    user.is_verified = False
    sess.add(user)
    await sess.commit()
    await sess.refresh(user)
    return user


async def _deliver(mailer: Mailer, to: str, subject: str, html: str) -> None:
    try:
        await mailer.send(to, subject, html)
    except DeliveryFailed:
        raise
    except Exception as e:
        logger.exception('mail delivery to %s failed', to)
        raise DeliveryFailed(f'Failed to send email: {e}') from e


async def request_verification_code(email: Optional[str], mailer: Mailer, now: Optional[datetime] = None) -> User:
    email = normalize_email(email)
    _require(email=email)
    now = now or now_utc()
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.email == email).where(User.is_verified == True))
        if q.first():
            raise AlreadyVerified()
        code = generate_numeric_code()
        user = await _find_or_create_unverified(sess, email, code, now + VERIFICATION_CODE_TTL)
    logger.info('verification code issued for %s (user id=%s)', email, user.id)
    html = render_verification_email(code, config.VERIFICATION_CODE_TTL_MINUTES)
    await _deliver(mailer, email, 'Email Verification Code', html)
    return user


async def verify_code(email: Optional[str], code: Optional[str], now: Optional[datetime] = None) -> User:
    email = normalize_email(email)
    _require(email=email, code=code)
    now = now or now_utc()
    async with async_session() as sess:
        user = await _find_user(sess, email)
        if user is None:
            raise NotFound('No verification was requested for this email')
        if user.verification_code is None or user.verification_code != str(code).strip():
            raise InvalidCode()
        expires = as_utc(user.code_expires)
        if expires is None or now > expires:
            raise CodeExpired()
        # the code stays until registration clears it
        user.is_verified = True
        sess.add(user)
        await sess.commit()
        await sess.refresh(user)
    logger.info('email verified for %s', email)
    return user


async def register(name: Optional[str], email: Optional[str], password: Optional[str]) -> Tuple[str, User]:
    _require(name=name, email=email, password=password)
    email = normalize_email(email)
    async with async_session() as sess:
        user = await _find_user(sess, email)
        if user is not None and user.password_hash:
            raise UserExists()
        if user is None or not user.is_verified:
            raise VerificationRequired()
        user.name = name.strip()
        user.password_hash = hash_password(password)
        user.verification_code = None
        user.code_expires = None
        sess.add(user)
        await sess.commit()
        await sess.refresh(user)
    logger.info('registered user id=%s email=%s', user.id, email)
    return create_access_token(user.id), user


async def login(email: Optional[str], password: Optional[str]) -> Tuple[str, User]:
    email = normalize_email(email)
    if not email or not password:
        raise InvalidCredentials()
    async with async_session() as sess:
        user = await _find_user(sess, email)
    if user is None or not user.password_hash:
        raise InvalidCredentials()
    if not user.is_verified:
        raise EmailNotVerified()
    if not verify_password(password, user.password_hash):
        logger.info('login failed for %s: bad password', email)
        raise InvalidCredentials()
    return create_access_token(user.id), user


async def get_profile(user_id: int) -> User:
    async with async_session() as sess:
        user = await sess.get(User, user_id)
    if user is None:
        raise NotFound()
    return user


async def request_password_reset(email: Optional[str], mailer: Mailer, now: Optional[datetime] = None) -> User:
    email = normalize_email(email)
    _require(email=email)
    now = now or now_utc()
    async with async_session() as sess:
        user = await _find_user(sess, email)
        # signups that never registered have no password to reset
        if user is None or not user.password_hash:
            raise NotFound()
        code = generate_numeric_code()
        user.reset_code = code
        user.reset_code_expires = now + RESET_CODE_TTL
        sess.add(user)
        await sess.commit()
        await sess.refresh(user)
    logger.info('password reset code issued for %s', email)
    html = render_reset_email(code, config.RESET_CODE_TTL_MINUTES)
    await _deliver(mailer, email, 'Password Reset Code', html)
    return user


async def reset_password(email: Optional[str], code: Optional[str], new_password: Optional[str],
                         now: Optional[datetime] = None) -> User:
    email = normalize_email(email)
    _require(email=email, code=code, newPassword=new_password)
    now = now or now_utc()
    async with async_session() as sess:
        user = await _find_user(sess, email)
        expires = as_utc(user.reset_code_expires) if user else None
        if (
            user is None
            or not user.password_hash
            or user.reset_code is None
            or user.reset_code != str(code).strip()
            or expires is None
            or not expires > now
        ):
            raise InvalidOrExpiredCode()
        user.password_hash = hash_password(new_password)
        user.reset_code = None
        user.reset_code_expires = None
        sess.add(user)
        await sess.commit()
        await sess.refresh(user)
    logger.info('password reset for %s', email)
    return user


async def prune_abandoned_signups(now: Optional[datetime] = None, ttl: Optional[timedelta] = None) -> int:
    """Delete signups that never registered once their code is long expired."""
    now = now or now_utc()
    if ttl is None:
        ttl = timedelta(hours=config.ABANDONED_SIGNUP_TTL_HOURS)
    cutoff = now - ttl
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.password_hash == None))
        stale_ids = []
        for u in q.all():
            expires = as_utc(u.code_expires)
            # a row with no code left cannot finish signing up either
            if expires is None or expires < cutoff:
                stale_ids.append(u.id)
        if not stale_ids:
            return 0
        await sess.execute(sqlalchemy_delete(User).where(User.id.in_(stale_ids)))
        await sess.commit()
    logger.info('pruned %d abandoned signups', len(stale_ids))
    return len(stale_ids)
