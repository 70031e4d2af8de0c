from typing import List, Optional


# Base for every error the services raise; the app maps each one to a fixed status and safe message
class ChatBackendError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, errors: Optional[List[str]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(ChatBackendError):
    status_code = 400
    default_message = "Validation error"


class DuplicateIdentityError(ChatBackendError):
    status_code = 409
    default_message = "User with this email already exists"


# Absent and not-owned are reported the same way so callers cannot probe for existence
class NotFound(ChatBackendError):
    status_code = 404
    default_message = "Chat not found or access denied"


class AuthError(ChatBackendError):
    status_code = 401
    default_message = "Authentication failed"


class InvalidToken(AuthError):
    default_message = "Invalid token"


class MalformedToken(InvalidToken):
    default_message = "Invalid token format"


class TokenSignatureError(InvalidToken):
    default_message = "Invalid token"


class ExpiredToken(AuthError):
    default_message = "Token expired"


# Raised inside the AI gateway only; it is turned into a fallback reply and never reaches a response
class UpstreamError(ChatBackendError):
    status_code = 502
    default_message = "AI service error"

    def __init__(self, message: Optional[str] = None, *, reason=None):
        super().__init__(message)
        self.reason = reason


class InternalError(ChatBackendError):
    status_code = 500
    default_message = "Internal server error"
