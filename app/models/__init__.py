"""
SQLAlchemy models for the Facebook Ads Analytics API.
"""
from __future__ import annotations

from sqlalchemy import (
    DECIMAL,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.base import Base, JSONType, as_utc, new_id, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(Text, nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    first_name = Column(Text)
    last_name = Column(Text)
    company_name = Column(Text)
    job_title = Column(Text)
    phone = Column(Text)
    profile_image_url = Column(Text)
    is_email_verified = Column(Boolean, default=False)
    status = Column(Text, nullable=False, default="active")
    password_reset_token = Column(Text)
    password_reset_expires = Column(DateTime(timezone=True))
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user_roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    facebook_accounts = relationship(
        "FacebookAccount", back_populates="user", cascade="all, delete-orphan"
    )
    subscriptions = relationship("Subscription", back_populates="user", passive_deletes=True)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token = Column(Text, nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    user_agent = Column(Text)
    ip_address = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="sessions")


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text)
    is_system = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    role_permissions = relationship(
        "RolePermission", back_populates="role", cascade="all, delete-orphan"
    )
    user_roles = relationship("UserRole", back_populates="role", cascade="all, delete-orphan")


class Permission(Base):
    __tablename__ = "permissions"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False, unique=True)
    resource = Column(Text, nullable=False)
    action = Column(Text, nullable=False)
    description = Column(Text)

    role_permissions = relationship("RolePermission", back_populates="permission")


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="user_roles")
    role = relationship("Role", back_populates="user_roles")


class RolePermission(Base):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = Column(
        String(36), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )

    role = relationship("Role", back_populates="role_permissions")
    permission = relationship("Permission", back_populates="role_permissions")


class FacebookAccount(Base):
    __tablename__ = "facebook_accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    facebook_user_id = Column(Text, nullable=False)
    access_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))
    name = Column(Text)
    email = Column(Text)
    profile_picture_url = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="facebook_accounts")
    ad_accounts = relationship(
        "AdAccount", back_populates="facebook_account", cascade="all, delete-orphan"
    )

    def has_valid_token(self) -> bool:
        if not self.access_token:
            return False
        expires_at = as_utc(self.token_expires_at)
        return expires_at is None or expires_at > utcnow()


class AdAccount(Base):
    __tablename__ = "ad_accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    facebook_account_id = Column(
        String(36), ForeignKey("facebook_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_ad_account_id = Column(Text, nullable=False)
    name = Column(Text)
    currency = Column(Text)
    timezone = Column(Text)
    business_name = Column(Text)
    business_id = Column(Text)
    account_status = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    facebook_account = relationship("FacebookAccount", back_populates="ad_accounts")
    campaigns = relationship("Campaign", back_populates="ad_account", cascade="all, delete-orphan")
    users = relationship("AdAccountUser", back_populates="ad_account", cascade="all, delete-orphan")

    @property
    def graph_id(self) -> str:
        """Ad account id without the ``act_`` prefix."""
        return (self.facebook_ad_account_id or "").replace("act_", "", 1)


class AdAccountUser(Base):
    __tablename__ = "ad_account_users"

    id = Column(String(36), primary_key=True, default=new_id)
    ad_account_id = Column(
        String(36), ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_user_id = Column(Text, nullable=False)
    name = Column(Text)
    role = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ad_account = relationship("AdAccount", back_populates="users")


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=new_id)
    ad_account_id = Column(
        String(36), ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_campaign_id = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    objective = Column(Text)
    status = Column(Text, default="PAUSED")
    buying_type = Column(Text, default="AUCTION")
    special_ad_categories = Column(JSONType, default=list)
    daily_budget = Column(DECIMAL(15, 2))
    lifetime_budget = Column(DECIMAL(15, 2))
    start_time = Column(DateTime(timezone=True))
    end_time = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    ad_account = relationship("AdAccount", back_populates="campaigns")
    ad_sets = relationship("AdSet", back_populates="campaign", cascade="all, delete-orphan")


class AdSet(Base):
    __tablename__ = "ad_sets"

    id = Column(String(36), primary_key=True, default=new_id)
    campaign_id = Column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_ad_set_id = Column(Text, nullable=False)
    name = Column(Text)
    status = Column(Text)
    optimization_goal = Column(Text)
    billing_event = Column(Text)
    daily_budget = Column(DECIMAL(15, 2))
    lifetime_budget = Column(DECIMAL(15, 2))
    targeting = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    campaign = relationship("Campaign", back_populates="ad_sets")


class Insight(Base):
    __tablename__ = "insights"

    id = Column(String(36), primary_key=True, default=new_id)
    ad_account_id = Column(
        String(36), ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    object_id = Column(String(36), nullable=False, index=True)
    object_type = Column(Text, nullable=False)
    date = Column(Date, nullable=False)
    impressions = Column(BigInteger, default=0)
    clicks = Column(BigInteger, default=0)
    reach = Column(BigInteger, default=0)
    spend = Column(DECIMAL(15, 2), default=0)
    conversions = Column(BigInteger, default=0)
    conversion_value = Column(DECIMAL(15, 2), default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AdLibraryItem(Base):
    __tablename__ = "ad_library_items"

    id = Column(String(64), primary_key=True)
    facebook_ad_id = Column(Text, nullable=False)
    page_id = Column(Text)
    page_name = Column(Text)
    content = Column(JSONType, default=dict)
    snapshot_url = Column(Text)
    delivery_start = Column(DateTime(timezone=True))
    delivery_stop = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AdCollection(Base):
    __tablename__ = "ad_collections"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    is_public = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship("AdCollectionItem", back_populates="collection", cascade="all, delete-orphan")


class AdCollectionItem(Base):
    __tablename__ = "ad_collection_items"
    __table_args__ = (
        UniqueConstraint("collection_id", "ad_library_item_id", name="uq_collection_items_collection_ad"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    collection_id = Column(
        String(36), ForeignKey("ad_collections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ad_library_item_id = Column(
        String(64), ForeignKey("ad_library_items.id", ondelete="CASCADE"), nullable=False
    )
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    collection = relationship("AdCollection", back_populates="items")
    ad_library_item = relationship("AdLibraryItem")


from app.models.subscription import BillingEvent, Subscription, SubscriptionPlan  # noqa: E402

__all__ = [
    "Base",
    "User",
    "UserSession",
    "Role",
    "Permission",
    "UserRole",
    "RolePermission",
    "FacebookAccount",
    "AdAccount",
    "AdAccountUser",
    "Campaign",
    "AdSet",
    "Insight",
    "AdLibraryItem",
    "AdCollection",
    "AdCollectionItem",
    "SubscriptionPlan",
    "Subscription",
    "BillingEvent",
]
