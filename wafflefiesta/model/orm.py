from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Float,
    Integer,
    String,
    UniqueConstraint,
)


Base = declarative_base()

PAYMENT_ONLINE = "Online"
PAYMENT_CASH = "Cash"
STATUS_UNUSED = "Unused"
STATUS_REDEEMED = "Redeemed"
VERIFICATION_PENDING = "Pending"
VERIFICATION_VERIFIED = "Verified"

ROLE_ADMIN = "admin"


# ----------------------------
# ORM models
# ----------------------------
class Coupon(Base):
    __tablename__ = "coupons"
    id = Column(String, primary_key=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(10), nullable=False)
    coupon_id = Column(String, nullable=False, unique=True)

    # Online | Cash
    payment_type = Column(String, nullable=False)
    # Unused | Redeemed
    status = Column(String, nullable=False, default=STATUS_UNUSED)
    # Pending | Verified
    verification_status = Column(
        String, nullable=False, default=VERIFICATION_PENDING
    )

    # gateway payment id; only set by the checkout callback, one coupon each
    payment_id = Column(String, nullable=True, unique=True)
    # buyer-typed UPI reference; NULLs do not collide
    transaction_id = Column(String, nullable=True, unique=True)

    created_at = Column(Float, nullable=False)
    redeemed_at = Column(Float, nullable=True)


class AdminUser(Base):
    __tablename__ = "admin_users"
    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)
    role = Column(String, nullable=False)
