"""
Authentication routes and dependencies

Every route declares how it treats credentials:

    CredentialPolicy.REQUIRED - missing, invalid or expired credentials are
                                rejected with 401 (Unauthenticated)
    CredentialPolicy.OPTIONAL - the same cases resolve to an anonymous caller
                                (tier "none"); the request goes through

    @router.get("/posts")
    async def list_posts(user: Optional[User] = Depends(current_user(CredentialPolicy.OPTIONAL))):
        ...
"""

import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import (
    IdentityVerifier,
    create_jwt,
    hash_password,
    validate_email,
    validate_password_strength,
    verify_password,
)
from backend.utils.responses import success_response
from crud.user import UserRepository
from database import get_db
from database_models import User
from errors import Unauthenticated, ValidationFailed
from services.billing_service import BillingService, subscription_snapshot

logger = logging.getLogger(__name__)

AUTH_COOKIE = "auth_token"

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


class CredentialPolicy(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"


# Request models
class SignupRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


def extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Cookie first (browser clients), then the Authorization bearer header (API clients)."""
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


def current_user(policy: CredentialPolicy):
    """Build the dependency that resolves the caller under the given credential policy."""

    async def resolve(
        request: Request,
        auth_token: Optional[str] = Cookie(None),
        authorization: Optional[str] = Header(None, alias="Authorization"),
        db: AsyncSession = Depends(get_db),
    ) -> Optional[User]:
        verifier: IdentityVerifier = request.app.state.identity_verifier
        token = extract_token(auth_token, authorization)
        identity = verifier.verify(token)

        user = None
        if identity is not None:
            user = await UserRepository(db).get_user_by_id(identity.user_id)
            if user is not None and not user.is_active:
                user = None

        if user is None and policy is CredentialPolicy.REQUIRED:
            if token is None:
                raise Unauthenticated("No authentication token, access denied")
            raise Unauthenticated("Token is not valid")
        return user

    resolve.credential_policy = policy
    return resolve


require_user = current_user(CredentialPolicy.REQUIRED)
optional_user = current_user(CredentialPolicy.OPTIONAL)


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "subscription": subscription_snapshot(user),
    }


def _with_auth_cookie(response: JSONResponse, token: str, max_age: int) -> JSONResponse:
    response.set_cookie(
        key=AUTH_COOKIE,
        value=token,
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=max_age,
    )
    return response


@auth_router.post("/signup")
async def signup(body: SignupRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """Create a new user account with no subscription (tier none, status inactive)"""
    settings = request.app.state.settings
    if not validate_email(body.email):
        raise ValidationFailed("Invalid email format")
    try:
        validate_password_strength(body.password)
    except ValueError as e:
        raise ValidationFailed(str(e))

    user_repo = UserRepository(db)
    if await user_repo.get_user_by_email(body.email):
        raise ValidationFailed("Email already registered")

    user = await user_repo.create_user({
        "email": body.email,
        "name": body.name,
        "hashed_password": hash_password(body.password),
    })
    logger.info(f"User {user.id} signed up")

    token = create_jwt(str(user.id), settings)
    response = success_response({"token": token, "user": _user_payload(user)}, message="Signed up", status=201)
    return _with_auth_cookie(response, token, settings.jwt_expire_days * 86400)


@auth_router.post("/login")
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """Login and get JWT token"""
    settings = request.app.state.settings
    user = await UserRepository(db).get_user_by_email(body.email)
    if user is None or not verify_password(body.password, user.hashed_password):
        raise Unauthenticated("Invalid email or password")
    if not user.is_active:
        raise Unauthenticated("User account is inactive")

    token = create_jwt(str(user.id), settings)
    response = success_response({"token": token, "user": _user_payload(user)}, message="Logged in")
    return _with_auth_cookie(response, token, settings.jwt_expire_days * 86400)


@auth_router.get("/me")
async def get_current_user_info(user: User = Depends(require_user)):
    """Get current user information from JWT token"""
    return success_response(_user_payload(user))


@auth_router.post("/logout")
async def logout():
    """Logout and clear auth token cookie"""
    response = success_response(message="Logged out successfully")
    return _with_auth_cookie(response, "", 0)


@auth_router.post("/subscribe-free")
async def subscribe_free(request: Request, user: User = Depends(require_user), db: AsyncSession = Depends(get_db)):
    """Enroll the caller in the free tier; only allowed from tier none"""
    service = BillingService(db, request.app.state.billing_provider, request.app.state.checkout_locks)
    user = await service.enroll_free(user.id)
    return success_response(
        {"user": _user_payload(user)},
        message="Successfully subscribed to free tier",
    )
