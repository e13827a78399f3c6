"""
User model for internal CS staff. Customers and agencies are not users;
they authenticate by email against campaigns and agencies.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base

CS_ROLES = ("cs", "admin")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String(255), index=True, nullable=False)
    display_name = Column(String(100))
    role = Column(String(50), nullable=False, default="cs")  # cs, admin
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    tenant = relationship("Tenant", back_populates="users")
    owned_campaigns = relationship("Campaign", back_populates="cs_user")

    @property
    def is_cs(self) -> bool:
        return self.role in CS_ROLES
