import logging

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ChatBackend.database import get_db
from ChatBackend.errors import AuthError
from ChatBackend.models.user_model import User
from ChatBackend.services.auth_service import AuthService
from ChatBackend.services.token_service import SessionIssuer

logger = logging.getLogger(__name__)


def get_session_issuer(request: Request) -> SessionIssuer:
    return request.app.state.session_issuer


# Pulls the token out of `Authorization: Bearer <token>`
def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Access token required")
    return token.strip()


# Verifies the bearer token and loads the user it names; raises 401 otherwise
def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
) -> User:
    token = _bearer_token(request)
    try:
        user_id = issuer.verify(token)
    except AuthError as e:
        logger.info("Rejected token: %s", e.message)
        raise

    user = AuthService(db).find_by_id(user_id)
    if user is None:
        raise AuthError("Invalid token - user not found")
    return user
