# Models module
from .base import Base
from .user import User, UserRole, UserStatus
from .otp import OTP, OTPPurpose

__all__ = [
    "Base",
    "User",
    "UserRole",
    "UserStatus",
    "OTP",
    "OTPPurpose",
]
