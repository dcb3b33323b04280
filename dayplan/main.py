from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import logging
import sys

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from . import accounts, config
from .auth import require_user_id
from .db import init_db
from .errors import DayplanError, InternalError
from .mailer import Mailer, get_mailer
from .scheduler import planning_worker, signup_prune_worker
from .todo_api import router as todo_router

logger = logging.getLogger(__name__)
# Ensure INFO-level messages from the package appear on the server console
# when no handlers are configured (safe fallback for development/testing).
_pkg_logger = logging.getLogger('dayplan')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The application should not start with the predictable fallback secret;
    # every issued token would be forgeable.
    if not config.SECRET_KEY or config.SECRET_KEY == config.INSECURE_SECRET_KEY:
        raise RuntimeError("SECRET_KEY not set or insecure fallback in use; set the SECRET_KEY environment variable before starting the server")

    await init_db()
    logger.info('starting server using DATABASE_URL=%s', config.DATABASE_URL)

    stop_event = asyncio.Event()
    tasks = []
    if config.SCHEDULER_ENABLED:
        tasks.append(asyncio.create_task(planning_worker(stop_event, config.PLANNER_TIMEZONE)))
        logger.info('planning scheduler: enabled (timezone=%s)', config.PLANNER_TIMEZONE)
    else:
        logger.info('planning scheduler: disabled (set SCHEDULER_ENABLED=1 to enable)')
    tasks.append(asyncio.create_task(signup_prune_worker(stop_event, config.SIGNUP_PRUNE_INTERVAL_SECONDS)))
    try:
        yield
    finally:
        # signal workers to stop and wait for them
        stop_event.set()
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass


app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=['*'],
    allow_headers=['*'],
)
app.include_router(todo_router)


def _error_body(message: str, code: str) -> dict:
    return {'success': False, 'message': message, 'code': code}


@app.exception_handler(DayplanError)
async def dayplan_error_handler(request: Request, exc: DayplanError):
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return JSONResponse(_error_body(exc.message, exc.code), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = '.'.join(str(p) for p in first.get('loc', ()) if p != 'body')
        message = f"{where}: {first.get('msg')}" if where else str(first.get('msg'))
    else:
        message = 'Invalid request'
    return JSONResponse(_error_body(message, 'validation_error'), status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception('unhandled error on %s %s', request.method, request.url.path)
    err = InternalError()
    return JSONResponse(_error_body(err.message, err.code), status_code=err.status_code)


class _Body(BaseModel):
    # accept numeric codes sent as JSON numbers
    model_config = ConfigDict(coerce_numbers_to_str=True)


class EmailRequest(_Body):
    email: Optional[str] = None


class VerifyCodeRequest(_Body):
    email: Optional[str] = None
    code: Optional[str] = None


class RegisterRequest(_Body):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(_Body):
    email: Optional[str] = None
    password: Optional[str] = None


class ResetPasswordRequest(_Body):
    email: Optional[str] = None
    code: Optional[str] = None
    newPassword: Optional[str] = None


def _auth_payload(token: str, user) -> dict:
    return {
        'success': True,
        'token': token,
        'user': {'id': user.id, 'name': user.name, 'email': user.email},
    }


@app.get('/health')
async def health():
    return {'ok': True}


@app.post('/auth/send-verification-code')
async def send_verification_code(req: EmailRequest, mailer: Mailer = Depends(get_mailer)):
    await accounts.request_verification_code(req.email, mailer)
    return {'success': True, 'message': 'Verification code sent to your email'}


@app.post('/auth/verify-code')
async def verify_code(req: VerifyCodeRequest):
    await accounts.verify_code(req.email, req.code)
    return {'success': True, 'message': 'Email verified successfully'}


@app.post('/auth/register', status_code=201)
async def register(req: RegisterRequest):
    token, user = await accounts.register(req.name, req.email, req.password)
    return _auth_payload(token, user)


@app.post('/auth/login')
async def login(req: LoginRequest):
    token, user = await accounts.login(req.email, req.password)
    return _auth_payload(token, user)


@app.get('/auth/user')
async def current_user(user_id: int = Depends(require_user_id)):
    user = await accounts.get_profile(user_id)
    return {'success': True, 'user': accounts.public_user(user)}


@app.post('/auth/forgot-password')
async def forgot_password(req: EmailRequest, mailer: Mailer = Depends(get_mailer)):
    await accounts.request_password_reset(req.email, mailer)
    return {'success': True, 'message': 'Password reset code sent to your email'}


@app.post('/auth/reset-password')
async def reset_password(req: ResetPasswordRequest):
    await accounts.reset_password(req.email, req.code, req.newPassword)
    return {'success': True, 'message': 'Password has been reset successfully'}
