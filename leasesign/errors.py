from typing import Dict, List, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse


class SigningError(Exception):
    """Base class for errors that abort a lease request with a specific response."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "request rejected"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.message = message or self.message
        self.errors = list(errors or [])
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self):
        body = {"error": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class SignatureValidationError(SigningError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "invalid signature"


class SignerNotAuthorized(SigningError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "not authorized to sign this lease"


class AlreadySigned(SignerNotAuthorized):
    message = "already signed"


class LeaseNotSignable(SigningError):
    status_code = status.HTTP_409_CONFLICT
    message = "lease is closed for signature"


class TransitionRejected(SigningError):
    status_code = status.HTTP_409_CONFLICT
    message = "transition not allowed"


class RateLimitExceeded(SigningError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "too many requests, please retry later"


class SigningFailed(SigningError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "signing failed, please retry"


async def signing_error_handler(request: Request, exc: SigningError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)
