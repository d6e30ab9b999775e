import enum
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum, JSON, Index
from sqlalchemy.orm import relationship

from authcore.models.base import Base, TimestampMixin, SoftDeleteMixin, enum_values


class OTPPurpose(str, enum.Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"
    TWO_FACTOR = "2fa"
    PHONE_VERIFICATION = "phone_verification"


class OTP(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "otps"
    __table_args__ = (
        Index("otps_verification_idx", "user_id", "purpose", "used", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(50), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # OTP details
    code = Column(String(20), nullable=False, index=True)
    purpose = Column(
        Enum(OTPPurpose, name="otp_purpose", values_callable=enum_values),
        nullable=False,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Status: only ever flips False -> True
    used = Column(Boolean, default=False, nullable=False)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)

    # Relationships
    user = relationship("User", back_populates="otps")

    def __repr__(self):
        return f"<OTP(id={self.id}, user_id={self.user_id}, purpose='{self.purpose}')>"
