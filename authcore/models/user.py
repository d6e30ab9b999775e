import enum

from sqlalchemy import Column, String, Boolean, Integer, Text, ForeignKey, Enum, CheckConstraint
from sqlalchemy.orm import relationship

from authcore.models.base import Base, TimestampMixin, SoftDeleteMixin, enum_values


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="users_credits_non_negative"),
    )

    # Assigned once by the credential store, never updated
    id = Column(String(50), primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)  # always lower-case
    email_verified = Column(Boolean, default=False, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    profile_image = Column(Text, nullable=True)
    cover_image = Column(Text, nullable=True)

    # Account status
    status = Column(
        Enum(UserStatus, name="user_status", values_callable=enum_values),
        default=UserStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    role = Column(
        Enum(UserRole, name="user_role", values_callable=enum_values),
        default=UserRole.USER,
        nullable=False,
    )

    # Referrals
    referral_code = Column(String(20), unique=True, nullable=True)
    referred_by = Column(String(50), ForeignKey("users.id"), nullable=True)

    credits = Column(Integer, default=0, nullable=False)

    # Relationships
    otps = relationship("OTP", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    referrer = relationship("User", remote_side=[id])

    @property
    def is_blocked(self) -> bool:
        return self.status == UserStatus.BLOCKED

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def to_dict(self) -> dict:
        """Public representation. The password hash is never included."""
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "emailVerified": self.email_verified,
            "phone": self.phone,
            "profileImage": self.profile_image,
            "coverImage": self.cover_image,
            "status": self.status.value if self.status else None,
            "role": self.role.value if self.role else None,
            "referralCode": self.referral_code,
            "referredBy": self.referred_by,
            "credits": self.credits,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_summary(self) -> dict:
        """The user block returned alongside tokens."""
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "role": self.role.value if self.role else None,
            "credits": self.credits,
            "emailVerified": self.email_verified,
        }

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"
