"""
Authentication Endpoints.

Entry-screen operations of the platform auth service.

Endpoints Provided:
- `/auth/signup`: Creates an account and its profile row. The terms of
  service must be accepted.
- `/auth/signin`: Authenticates with email and password and returns JWT access
  and refresh tokens.
- `/auth/refresh`: Exchanges a refresh token for a new token pair.
- `/auth/signout`: Revokes the current access token.
- `/auth/me`: Returns the profile of the authenticated viewer.

Errors raised by the auth service (`AuthenticationError`, `ValidationError`)
are rendered by the application's exception handler.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr

from core.exceptions import GatewayError, ValidationError
from core.logging_config import get_logger, log_function_call
from core.models import Profile, ProfileSummary
from providers.gateway import DataGateway
from .dependencies import get_access_token, get_current_profile, get_gateway

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


# Request/Response Models
class SignUpRequest(BaseModel):
    email: EmailStr
    password: str
    username: str
    accept_terms: bool = False


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    user_id: str


class SignUpResponse(TokenResponse):
    profile: ProfileSummary


class MeResponse(ProfileSummary):
    email: Optional[str] = None
    bio: Optional[str] = None


@router.post("/signup", response_model=SignUpResponse, status_code=201)
@log_function_call(logger)
async def sign_up(request: SignUpRequest, gateway: DataGateway = Depends(get_gateway)):
    """Register an account, create its profile and sign it in"""
    if not request.accept_terms:
        raise ValidationError("accept_terms", False, "You must accept the terms of service")

    username = request.username.strip()
    if await gateway.table("profiles").eq("username", username).count() > 0:
        raise ValidationError("username", username, "Username is already taken")

    identity = await gateway.auth.sign_up(request.email, request.password, username)
    try:
        rows = await gateway.table("profiles").insert(
            [{"id": identity.id, "username": identity.username, "email": identity.email}]
        )
    except GatewayError as e:
        # The session guard creates the profile on first sign-in instead
        logger.warning(f"Profile creation at sign-up failed for {identity.id}: {e.message}")
        raise

    tokens = gateway.auth.create_tokens(identity)
    logger.info(f"Account signed up: {username}")
    return SignUpResponse(**tokens, profile=ProfileSummary.model_validate(rows[0]))


@router.post("/signin", response_model=TokenResponse)
@log_function_call(logger)
async def sign_in(request: SignInRequest, gateway: DataGateway = Depends(get_gateway)):
    """Authenticate with email and password"""
    tokens = await gateway.auth.sign_in(request.email, request.password)
    return TokenResponse(**tokens)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    request: RefreshTokenRequest, gateway: DataGateway = Depends(get_gateway)
):
    """Refresh access token using refresh token"""
    tokens = await gateway.auth.refresh(request.refresh_token)
    return TokenResponse(**tokens)


@router.post("/signout")
async def sign_out(
    token: Optional[str] = Depends(get_access_token),
    gateway: DataGateway = Depends(get_gateway),
):
    """Revoke the current access token"""
    if token:
        gateway.auth.sign_out(token)
    return {"message": "Signed out successfully"}


@router.get("/me", response_model=MeResponse)
async def get_me(viewer: Profile = Depends(get_current_profile)):
    """Profile of the authenticated viewer"""
    return MeResponse(
        **ProfileSummary.model_validate(viewer).model_dump(),
        email=viewer.email,
        bio=viewer.bio,
    )
