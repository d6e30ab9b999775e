from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from authcore.auth.dependencies import CurrentUser, get_auth_service, get_bearer_token, get_current_user
from authcore.auth.service import AuthService
from authcore.schemas.auth import (
    ChangePasswordRequest, FacebookLoginRequest, ForgotPasswordRequest, GoogleLoginRequest,
    LoginRequest, LoginResponse, LogoutRequest, MessageResponse, RefreshTokenRequest,
    RegisterRequest, ResetPasswordRequest, ResetTokenResponse, TokenPairResponse,
    TokenVerificationResponse, UserDataResponse, VerifyEmailRequest, VerifyOTPRequest
)
from authcore.utils.helpers import get_client_info

router = APIRouter()


@router.post("/register", response_model=UserDataResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Register a new user."""
    return await service.register(
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        email=user_data.email,
        password=user_data.password,
        phone=user_data.phone,
        referral_code=user_data.referral_code,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    """Login with email and password."""
    return await service.login(credentials.email, credentials.password, client=get_client_info(request))


@router.post("/google", response_model=LoginResponse)
async def google_login(payload: GoogleLoginRequest, service: AuthService = Depends(get_auth_service)):
    """Login (or sign up) with a Google ID token."""
    return await service.google_login(payload.id_token)


@router.post("/facebook", response_model=LoginResponse)
async def facebook_login(payload: FacebookLoginRequest, service: AuthService = Depends(get_auth_service)):
    """Login (or sign up) with a Facebook access token."""
    return await service.facebook_login(payload.access_token)


@router.post("/refresh-token", response_model=TokenPairResponse)
async def refresh_token(payload: RefreshTokenRequest, service: AuthService = Depends(get_auth_service)):
    """Exchange a refresh token for a new token pair."""
    return await service.refresh_token(payload.refresh_token)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    service: AuthService = Depends(get_auth_service),
):
    """Send a password reset code if the account exists."""
    return await service.forgot_password(payload.email, background=background_tasks)


@router.post("/verify-otp", response_model=ResetTokenResponse)
async def verify_otp(payload: VerifyOTPRequest, service: AuthService = Depends(get_auth_service)):
    """Trade a password reset code for a reset token."""
    return await service.verify_otp(payload.email, payload.code)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(payload: ResetPasswordRequest, service: AuthService = Depends(get_auth_service)):
    return await service.reset_password(payload.reset_token, payload.new_password)


@router.post("/request-verification", response_model=MessageResponse)
async def request_email_verification(
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Email a verification code to the current user."""
    return await service.request_email_verification(current_user.id, background=background_tasks)


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    payload: VerifyEmailRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    return await service.verify_email(current_user.id, payload.code)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Change password for the current user."""
    return await service.change_password(current_user.id, payload.current_password, payload.new_password)


@router.post("/verify-token", response_model=TokenVerificationResponse)
async def verify_token(
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
):
    return await service.verify_auth_token(token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    payload: Optional[LogoutRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke the presented access token and, optionally, a refresh token."""
    refresh = payload.refresh_token if payload else None
    return await service.logout(current_user.claims, refresh_token=refresh)


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    current_user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke every token issued to the current user."""
    return await service.logout_all(current_user.id)
