"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; dayplan.main maps them onto JSON responses of the
form ``{"success": false, "message": ..., "code": ...}``.
"""
from typing import Optional


class DayplanError(Exception):
    status_code = 500
    code = 'error'
    default_message = 'Server error'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DayplanError):
    status_code = 400
    code = 'validation_error'
    default_message = 'Invalid request'


class AuthError(DayplanError):
    status_code = 401
    code = 'auth_error'
    default_message = 'Not authorized'


class NotFoundError(DayplanError):
    status_code = 404
    code = 'not_found'
    default_message = 'Not found'


class ConflictError(DayplanError):
    status_code = 400
    code = 'conflict'
    default_message = 'Conflict'


class DeliveryError(DayplanError):
    status_code = 500
    code = 'delivery_error'
    default_message = 'Failed to deliver email'


class InternalError(DayplanError):
    status_code = 500
    code = 'internal_error'
    default_message = 'Server error'


# --- credential flow ---

class MissingFields(ValidationError):
    code = 'missing_fields'
    default_message = 'All fields are required'


class VerificationRequired(ValidationError):
    code = 'verification_required'
    default_message = 'Email verification required. Please verify your email first.'


class InvalidCode(ValidationError):
    code = 'invalid_code'
    default_message = 'Invalid verification code'


class CodeExpired(ValidationError):
    code = 'code_expired'
    default_message = 'Verification code has expired. Please request a new one.'


class InvalidOrExpiredCode(ValidationError):
    code = 'invalid_or_expired_code'
    default_message = 'Invalid or expired reset code'


class InvalidCredentials(ValidationError):
    code = 'invalid_credentials'
    default_message = 'Invalid credentials'


class EmailNotVerified(ValidationError):
    code = 'email_not_verified'
    default_message = 'Email not verified. Please verify your email before logging in.'


class AlreadyVerified(ConflictError):
    code = 'already_verified'
    default_message = 'An account with this email already exists and is verified'


class UserExists(ConflictError):
    code = 'user_exists'
    default_message = 'User already exists'


class NotFound(NotFoundError):
    code = 'user_not_found'
    default_message = 'User not found'


class DeliveryFailed(DeliveryError):
    code = 'delivery_failed'


# --- tokens ---

class MissingToken(AuthError):
    code = 'missing_token'
    default_message = 'No token, authorization denied'


class InvalidToken(AuthError):
    code = 'invalid_token'
    default_message = 'Token is not valid'
