import logging
import os
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse

from auth import create_access_token, create_refresh_token, get_current_user, get_optional_user, resolve_user
from auth_providers import (
    DuplicateUserError,
    EmailNotConfirmedError,
    InvalidCredentialsError,
    UserRecord,
    get_auth_provider,
)
from validation import LoginRequest, ProfileUpdateRequest, RefreshRequest, RegisterRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:5100/api/auth/callback")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
OAUTH_TIMEOUT = 10.0


def _token_pair(user: UserRecord) -> dict:
    return {"token": create_access_token(user), "refresh_token": create_refresh_token(user)}


def _public_user(user: UserRecord) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.display_name,
        "full_name": user.full_name,
        "avatar_url": user.avatar_url,
    }


def _require_oauth(provider):
    if getattr(provider, "name", None) != "database":
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Google sign-in is not available with development authentication",
        )
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="Google sign-in is not configured")


def fetch_google_profile(code: str) -> dict:
    """Exchange an authorization code for the Google account's profile."""
    with httpx.Client(timeout=OAUTH_TIMEOUT) as client:
        token_response = client.post(GOOGLE_TOKEN_URL, data={
            "code": code,
            "client_id": GOOGLE_CLIENT_ID,
            "client_secret": GOOGLE_CLIENT_SECRET,
            "redirect_uri": GOOGLE_REDIRECT_URI,
            "grant_type": "authorization_code",
        })
        token_response.raise_for_status()
        access_token = token_response.json()["access_token"]

        profile_response = client.get(GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        profile_response.raise_for_status()
        return profile_response.json()


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, provider=Depends(get_auth_provider)):
    try:
        user = provider.create_user(
            email=request.email,
            password=request.password,
            username=request.username,
            full_name=request.full_name,
            avatar_url=request.avatar_url,
        )
    except DuplicateUserError:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "User already exists",
                "error": "An account with this email address already exists. Please try logging in instead.",
            },
        )
    logger.info("Registered user %s", user.id)

    if user.email_confirmed_at is None:
        return {
            "success": True,
            "message": "Registration successful! Please check your email to confirm your account.",
            "data": {"user": _public_user(user), "needsConfirmation": True},
        }

    return {
        "success": True,
        "message": "Registration successful",
        "data": {"user": _public_user(user), **_token_pair(user), "needsConfirmation": False},
    }


@router.post("/login")
def login(request: LoginRequest, provider=Depends(get_auth_provider)):
    try:
        user = provider.authenticate(request.email, request.password)
    except (InvalidCredentialsError, EmailNotConfirmedError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid credentials", "error": str(e)},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is suspended")

    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": _public_user(user), **_token_pair(user)},
    }


@router.post("/logout")
def logout(
    current_user: Optional[UserRecord] = Depends(get_optional_user),
    provider=Depends(get_auth_provider),
):
    # Issued tokens stay valid until they expire
    if current_user is not None:
        provider.sign_out(current_user.id)
    return {"success": True, "message": "Logout successful"}


@router.get("/google")
def google_login(provider=Depends(get_auth_provider)):
    _require_oauth(provider)
    query = urlencode({
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": "openid email profile",
        "access_type": "offline",
        "prompt": "select_account",
    })
    return {
        "success": True,
        "message": "Redirect to Google OAuth",
        "data": {"url": f"{GOOGLE_AUTH_URL}?{query}"},
    }


@router.get("/callback")
def oauth_callback(code: Optional[str] = None, provider=Depends(get_auth_provider)):
    _require_oauth(provider)
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code is required")

    try:
        profile = fetch_google_profile(code)
    except (httpx.HTTPError, KeyError) as e:
        logger.error("Google OAuth exchange failed: %s", e)
        raise HTTPException(status_code=400, detail={"message": "OAuth callback failed", "error": str(e)})

    if not profile.get("email"):
        raise HTTPException(status_code=400, detail="OAuth callback failed")

    user = provider.upsert_oauth_user(
        email=profile["email"],
        full_name=profile.get("name"),
        avatar_url=profile.get("picture"),
    )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is suspended")

    token = create_access_token(user)
    return RedirectResponse(url=f"{CLIENT_URL}/auth/success?{urlencode({'token': token})}")


@router.post("/refresh")
def refresh_token(request: RefreshRequest, provider=Depends(get_auth_provider)):
    if not request.refresh_token:
        raise HTTPException(status_code=400, detail="Refresh token is required")

    user = resolve_user(request.refresh_token, token_type="refresh")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is suspended")

    return {
        "success": True,
        "message": "Token refreshed successfully",
        "data": {**_token_pair(user), "user": _public_user(user)},
    }


@router.get("/profile")
def get_profile(current_user: UserRecord = Depends(get_current_user)):
    return {"success": True, "data": {"user": current_user.profile()}}


@router.put("/profile")
def update_profile(
    request: ProfileUpdateRequest,
    current_user: UserRecord = Depends(get_current_user),
    provider=Depends(get_auth_provider),
):
    changes = request.model_dump(exclude_unset=True)
    user = provider.update_user(current_user.id, **changes)

    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": {"user": _public_user(user)},
    }
