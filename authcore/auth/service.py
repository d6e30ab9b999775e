"""
Authentication workflows.

``AuthService`` composes the credential store, the OTP engine, the token
issuer, the mailer and the identity providers into the request-level
operations exposed by the routers. Each workflow runs in one database
transaction: domain errors roll back and propagate unchanged, anything else
rolls back and is reported as the workflow's own ``*_ERROR`` code.

Mail and session revocation only happen after the transaction commits; a
single-use token spent inside a failed transaction is released again. When the
router hands in a ``BackgroundTasks`` the send happens after the response is
written.
"""
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from fastapi import BackgroundTasks
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.auth.providers import IdentityProvider, IdentityProviderError
from authcore.core.config import settings
from authcore.core.email_utils import EmailManager
from authcore.core.exceptions import (
    AppError, ForbiddenError, InternalError, InvalidTokenError, NotFoundError,
    RateLimitedError, UnauthorizedError, ValidationError
)
from authcore.core.logging import get_logger
from authcore.core.security import generate_random_password
from authcore.core.tokens import TokenIssuer, TokenType
from authcore.models.otp import OTPPurpose
from authcore.models.user import User, UserStatus
from authcore.services.credential_store import CredentialStore, UserCandidate
from authcore.services.otp_engine import OTPEngine

logger = get_logger(__name__)

RESET_CODE_LENGTH = 6
VERIFICATION_CODE_LENGTH = 8
FORGOT_PASSWORD_MESSAGE = "If the user exists, a password reset email has been sent"


def split_display_name(name: str) -> Tuple[str, str]:
    parts = name.split()
    if not parts:
        return name, ""
    return parts[0], " ".join(parts[1:])


class WorkflowEffects:
    """Redis writes tied to the outcome of one workflow transaction.

    ``after_commit`` actions run only once the database commit succeeded;
    ``on_rollback`` actions undo Redis writes already made inside the block.
    """

    def __init__(self):
        self.committed = []
        self.compensations = []

    def after_commit(self, action, *args) -> None:
        self.committed.append((action, args))

    def on_rollback(self, action, *args) -> None:
        self.compensations.append((action, args))


class AuthService:
    def __init__(
        self,
        db: AsyncSession,
        tokens: TokenIssuer,
        mailer: EmailManager,
        providers: Optional[Dict[str, IdentityProvider]] = None,
    ):
        self.db = db
        self.tokens = tokens
        self.mailer = mailer
        self.providers = providers or {}
        self.users = CredentialStore(db)
        self.otps = OTPEngine(db)

    @asynccontextmanager
    async def _transaction(self, error_code: str):
        effects = WorkflowEffects()
        try:
            yield effects
            await self.db.commit()
        except AppError:
            await self._roll_back(effects, error_code)
            raise
        except Exception as exc:
            await self._roll_back(effects, error_code)
            logger.exception(f"workflow_failed | error_code={error_code}")
            raise InternalError(error_code) from exc

        try:
            for action, args in effects.committed:
                await action(*args)
        except Exception as exc:
            logger.exception(f"workflow_side_effect_failed | error_code={error_code}")
            raise InternalError(error_code) from exc

    async def _roll_back(self, effects: WorkflowEffects, error_code: str) -> None:
        await self.db.rollback()
        for action, args in effects.compensations:
            try:
                await action(*args)
            except RedisError:
                logger.exception(f"workflow_compensation_failed | error_code={error_code}")

    async def _deliver(self, background: Optional[BackgroundTasks], send, *args) -> None:
        if background is not None:
            background.add_task(send, *args)
        else:
            await send(*args)

    def _login_response(self, message: str, user: User) -> dict:
        return {"message": message, "user": user.to_summary(), **self.tokens.issue_access_and_refresh(user)}

    # Registration and login

    async def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> dict:
        async with self._transaction("REGISTRATION_ERROR"):
            user = await self.users.create_user(
                UserCandidate(
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    password=password,
                    phone=phone,
                    referral_code=referral_code,
                )
            )
        logger.info(f"user_registered | user_id={user.id}")
        return {"message": "User registered successfully", "data": user.to_dict()}

    async def login(self, email: str, password: str, client: Optional[dict] = None) -> dict:
        async with self._transaction("LOGIN_ERROR"):
            user = await self.users.get_by_email(email)
            if user is None:
                # Keep the miss path as slow as a real comparison
                await self.users.dummy_verify()
                logger.warning("login_failed | reason=invalid_credentials")
                raise UnauthorizedError("INVALID_CREDENTIALS")

            if not await self.users.verify_password(user, password):
                logger.warning(f"login_failed | user_id={user.id} reason=invalid_credentials")
                raise UnauthorizedError("INVALID_CREDENTIALS")

            if user.is_blocked:
                logger.warning(f"login_failed | user_id={user.id} reason=blocked")
                raise ForbiddenError("ACCOUNT_BLOCKED")

            response = self._login_response("Login successful", user)

        client = client or {}
        logger.info(
            f"login_succeeded | user_id={user.id} ip={client.get('ip_address')} "
            f"device={client.get('device_info')}"
        )
        return response

    async def _federated_login(self, provider_name: str, token: str, error_code: str, message: str) -> dict:
        provider = self.providers.get(provider_name)
        if provider is None:
            logger.error(f"federated_login_failed | provider={provider_name} reason=not_configured")
            raise InternalError(error_code)

        try:
            identity = await provider.introspect(token)
        except IdentityProviderError as exc:
            logger.warning(f"federated_login_failed | provider={provider_name} reason={exc}")
            raise InternalError(error_code) from exc

        async with self._transaction(error_code):
            user = await self.users.get_by_email(identity.email)
            if user is None:
                first_name, last_name = split_display_name(identity.name or identity.email)
                user = await self.users.create_user(
                    UserCandidate(
                        first_name=first_name,
                        last_name=last_name,
                        email=identity.email,
                        password=generate_random_password(),
                        email_verified=True,
                    )
                )
                logger.info(f"federated_user_created | provider={provider_name} user_id={user.id}")
            elif not user.email_verified:
                # The provider vouches for the address
                await self.users.mark_email_verified(user)

            if user.is_blocked:
                logger.warning(f"federated_login_failed | provider={provider_name} user_id={user.id} reason=blocked")
                raise ForbiddenError("ACCOUNT_BLOCKED")

            response = self._login_response(message, user)

        logger.info(f"federated_login_succeeded | provider={provider_name} user_id={user.id}")
        return response

    async def google_login(self, id_token: str) -> dict:
        return await self._federated_login("google", id_token, "GOOGLE_LOGIN_ERROR", "Google login successful")

    async def facebook_login(self, access_token: str) -> dict:
        return await self._federated_login(
            "facebook", access_token, "FACEBOOK_LOGIN_ERROR", "Facebook login successful"
        )

    async def refresh_token(self, refresh_token: str) -> dict:
        """Rotate a refresh token: the presented one is spent, a new pair is issued."""
        async with self._transaction("TOKEN_REFRESH_ERROR") as effects:
            claims = await self.tokens.verify(refresh_token, TokenType.REFRESH)
            user = await self.users.get_by_id(claims.get("id"))
            if user is None or user.is_blocked:
                raise InvalidTokenError()

            if not await self.tokens.consume(claims):
                logger.warning(f"refresh_token_reused | user_id={user.id}")
                raise InvalidTokenError()
            effects.on_rollback(self.tokens.release, claims)

            tokens = self.tokens.issue_access_and_refresh(user)

        logger.info(f"token_refreshed | user_id={user.id}")
        return {"message": "Token refreshed successfully", **tokens}

    # Password reset

    async def forgot_password(self, email: str, background: Optional[BackgroundTasks] = None) -> dict:
        """Issue a reset code. The response never reveals whether the account exists."""
        response = {"message": FORGOT_PASSWORD_MESSAGE}

        async with self._transaction("PASSWORD_RESET_ERROR"):
            user = await self.users.get_by_email(email)
            if user is None:
                logger.info("password_reset_requested | account=unknown")
                return response

            if await self.otps.is_rate_limited(user.id, OTPPurpose.PASSWORD_RESET):
                return response

            otp = await self.otps.issue(
                user.id,
                OTPPurpose.PASSWORD_RESET,
                expires_in_minutes=settings.OTP_EXPIRE_MINUTES,
                length=RESET_CODE_LENGTH,
                metadata={"email": user.email},
            )
            recipient, code, name = user.email, otp.code, user.first_name

        await self._deliver(background, self.mailer.send_password_reset_code, recipient, code, name)
        return response

    async def verify_otp(self, email: str, code: str) -> dict:
        """Spend a reset code and hand back a short-lived reset token."""
        async with self._transaction("OTP_VERIFICATION_ERROR"):
            user = await self.users.get_by_email(email)
            if user is None:
                raise ValidationError("INVALID_OTP")

            otp = await self.otps.verify_and_consume(user.id, code, OTPPurpose.PASSWORD_RESET)
            if otp is None:
                logger.warning(f"otp_rejected | user_id={user.id} purpose=password_reset")
                raise ValidationError("INVALID_OTP")

            reset_token = self.tokens.issue_purpose_token(
                user.id, OTPPurpose.PASSWORD_RESET, settings.RESET_TOKEN_EXPIRE_MINUTES * 60
            )

        return {"resetToken": reset_token}

    async def reset_password(self, reset_token: str, new_password: str) -> dict:
        async with self._transaction("PASSWORD_RESET_ERROR") as effects:
            claims = await self.tokens.verify(
                reset_token, TokenType.RESET_PASSWORD, purpose=OTPPurpose.PASSWORD_RESET
            )
            user = await self.users.get_by_id(claims.get("sub"))
            if user is None:
                raise NotFoundError("USER_NOT_FOUND")

            if await self.users.verify_password(user, new_password):
                raise ValidationError("SAME_PASSWORD")

            if not await self.tokens.consume(claims):
                raise InvalidTokenError()
            effects.on_rollback(self.tokens.release, claims)

            await self.users.update_password(user, new_password)
            await self.otps.invalidate_pending(user.id, OTPPurpose.PASSWORD_RESET, include_expired=True)
            effects.after_commit(self.tokens.revoke_all_for_user, user.id)

        logger.info(f"password_reset_completed | user_id={user.id}")
        return {"message": "Password updated successfully"}

    # Email verification

    async def _require_user(self, user_id: str) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("USER_NOT_FOUND")
        return user

    async def request_email_verification(self, user_id: str, background: Optional[BackgroundTasks] = None) -> dict:
        async with self._transaction("EMAIL_VERIFICATION_ERROR"):
            user = await self._require_user(user_id)
            if user.email_verified:
                return {"message": "Email is already verified"}

            if await self.otps.is_rate_limited(user.id, OTPPurpose.EMAIL_VERIFICATION):
                raise RateLimitedError("RATE_LIMITED")

            otp = await self.otps.issue(
                user.id,
                OTPPurpose.EMAIL_VERIFICATION,
                expires_in_minutes=settings.OTP_EXPIRE_MINUTES,
                length=VERIFICATION_CODE_LENGTH,
                metadata={"email": user.email},
            )
            recipient, code, name = user.email, otp.code, user.first_name

        await self._deliver(background, self.mailer.send_email_verification_code, recipient, code, name)
        return {"message": "Verification code sent to your email"}

    async def verify_email(self, user_id: str, code: str) -> dict:
        async with self._transaction("EMAIL_VERIFICATION_ERROR"):
            user = await self._require_user(user_id)
            if user.email_verified:
                return {"message": "Email is already verified"}

            otp = await self.otps.verify_and_consume(user.id, code, OTPPurpose.EMAIL_VERIFICATION)
            if otp is None:
                logger.warning(f"otp_rejected | user_id={user.id} purpose=email_verification")
                raise ValidationError("INVALID_CODE")

            await self.users.mark_email_verified(user)

        logger.info(f"email_verified | user_id={user.id}")
        return {"message": "Email verified successfully"}

    # Authenticated account operations

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> dict:
        async with self._transaction("PASSWORD_CHANGE_ERROR") as effects:
            user = await self._require_user(user_id)
            if not await self.users.verify_password(user, current_password):
                raise ValidationError("INVALID_PASSWORD")
            if await self.users.verify_password(user, new_password):
                raise ValidationError("SAME_PASSWORD")

            await self.users.update_password(user, new_password)
            effects.after_commit(self.tokens.revoke_all_for_user, user.id)

        logger.info(f"password_changed | user_id={user.id}")
        return {"message": "Password changed successfully"}

    async def authenticate(self, access_token: str) -> Tuple[User, dict]:
        """Resolve a bearer access token to its live, unblocked user."""
        async with self._transaction("TOKEN_VERIFICATION_ERROR"):
            claims = await self.tokens.verify(access_token, TokenType.ACCESS)
            user = await self.users.get_by_id(claims.get("id"))
            if user is None:
                raise InvalidTokenError()
            if user.is_blocked:
                raise ForbiddenError("ACCOUNT_BLOCKED")
        return user, claims

    async def verify_auth_token(self, access_token: str) -> dict:
        user, _ = await self.authenticate(access_token)
        return {"message": "Token is valid", "user": user.to_summary()}

    async def logout(self, access_claims: dict, refresh_token: Optional[str] = None) -> dict:
        async with self._transaction("LOGOUT_ERROR"):
            await self.tokens.revoke(access_claims)

            if refresh_token:
                try:
                    refresh_claims = self.tokens.decode(refresh_token, TokenType.REFRESH)
                except InvalidTokenError:
                    refresh_claims = None
                    logger.info(f"logout_refresh_ignored | user_id={access_claims.get('id')}")

                # Only the caller's own refresh tokens can be revoked this way
                if refresh_claims and refresh_claims.get("id") == access_claims.get("id"):
                    await self.tokens.revoke(refresh_claims)

        logger.info(f"logout | user_id={access_claims.get('id')}")
        return {"message": "Logout successful"}

    async def logout_all(self, user_id: str) -> dict:
        async with self._transaction("LOGOUT_ALL_ERROR") as effects:
            effects.after_commit(self.tokens.revoke_all_for_user, user_id)
        logger.info(f"logout_all | user_id={user_id}")
        return {"message": "Logged out from all devices"}

    # Moderation

    async def set_user_status(self, user_id: str, status: UserStatus) -> dict:
        async with self._transaction("USER_UPDATE_ERROR") as effects:
            user = await self._require_user(user_id)
            await self.users.set_status(user, status)
            if status == UserStatus.BLOCKED:
                effects.after_commit(self.tokens.revoke_all_for_user, user.id)
        return {"message": "User status updated", "data": user.to_dict()}

    async def delete_user(self, user_id: str) -> dict:
        async with self._transaction("USER_UPDATE_ERROR") as effects:
            user = await self._require_user(user_id)
            await self.users.soft_delete(user)
            effects.after_commit(self.tokens.revoke_all_for_user, user.id)
        return {"message": "User deleted"}

    async def restore_user(self, user_id: str) -> dict:
        async with self._transaction("USER_UPDATE_ERROR"):
            user = await self.users.get_by_id(user_id, include_deleted=True)
            if user is None or not user.is_deleted:
                raise NotFoundError("USER_NOT_FOUND")
            await self.users.restore(user)
        return {"message": "User restored", "data": user.to_dict()}

    async def purge_user(self, user_id: str) -> dict:
        """Hard delete, including soft-deleted accounts."""
        async with self._transaction("USER_DELETE_ERROR") as effects:
            user = await self.users.get_by_id(user_id, include_deleted=True)
            if user is None:
                raise NotFoundError("USER_NOT_FOUND")
            await self.users.purge(user)
            effects.after_commit(self.tokens.revoke_all_for_user, user_id)
        return {"message": "User permanently deleted"}

    async def add_credits(self, user_id: str, amount: int) -> dict:
        async with self._transaction("CREDITS_UPDATE_ERROR"):
            user = await self._require_user(user_id)
            await self.users.add_credits(user, amount)
        logger.info(f"credits_added | user_id={user_id} amount={amount} balance={user.credits}")
        return {"message": "Credits added", "data": user.to_dict()}

    async def deduct_credits(self, user_id: str, amount: int) -> dict:
        async with self._transaction("CREDITS_UPDATE_ERROR"):
            user = await self._require_user(user_id)
            await self.users.deduct_credits(user, amount)
        logger.info(f"credits_deducted | user_id={user_id} amount={amount} balance={user.credits}")
        return {"message": "Credits deducted", "data": user.to_dict()}
