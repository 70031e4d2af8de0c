import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ChatBackend.auth import get_current_user, get_session_issuer
from ChatBackend.database import get_db
from ChatBackend.errors import AuthError, ValidationError
from ChatBackend.models.user_model import User
from ChatBackend.schemas.auth import LoginRequest, SignupRequest
from ChatBackend.services.auth_service import AuthService, public_profile
from ChatBackend.services.token_service import SessionIssuer


router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


# Registers a user and returns a session token right away
@router.post("/signup", status_code=201)
def signup(
    payload: SignupRequest,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    user = AuthService(db).register(payload.name, payload.email, payload.password)
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "User registered successfully",
            "data": {"user": public_profile(user).wire(), "token": issuer.issue(user)},
        },
    )


# Exchanges email + password for a session token
@router.post("/login")
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    if not payload.email or not payload.password:
        raise ValidationError("Please provide email and password")

    user = AuthService(db).verify_credentials(payload.email, payload.password)
    if user is None:
        logger.info("Login failed for %s", payload.email.strip().lower())
        raise AuthError("Invalid email or password")

    logger.info("User logged in: %s", user.email)
    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": public_profile(user).wire(), "token": issuer.issue(user)},
    }


# Tokens are stateless; the client discards its copy
@router.post("/logout")
def logout(user: User = Depends(get_current_user)):
    logger.info("User logged out: %s", user.email)
    return {"success": True, "message": "Logout successful"}


@router.get("/profile")
def profile(user: User = Depends(get_current_user)):
    return {
        "success": True,
        "message": "Profile retrieved successfully",
        "data": {"user": public_profile(user).wire()},
    }


@router.get("/verify")
def verify(user: User = Depends(get_current_user)):
    return {
        "success": True,
        "message": "Token is valid",
        "data": {"user": public_profile(user).wire()},
    }
