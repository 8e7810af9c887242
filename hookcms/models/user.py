from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import relationship

from hookcms.database import Base
from hookcms.utils.dates import utcnow

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

user_capabilities = Table(
    "user_capabilities",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("capability_id", Integer, ForeignKey("capabilities.id", ondelete="CASCADE"), primary_key=True),
)

role_capabilities = Table(
    "role_capabilities",
    Base.metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("capability_id", Integer, ForeignKey("capabilities.id", ondelete="CASCADE"), primary_key=True),
)


class Capability(Base):
    __tablename__ = "capabilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(191), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class CapabilityInheritance(Base):
    """A parent capability implies each of its children."""

    __tablename__ = "capability_inheritance"

    parent_capability_id = Column(Integer, ForeignKey("capabilities.id", ondelete="CASCADE"), primary_key=True)
    child_capability_id = Column(Integer, ForeignKey("capabilities.id", ondelete="CASCADE"), primary_key=True)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(191), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    capabilities = relationship("Capability", secondary=role_capabilities, lazy="selectin")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(191), unique=True, nullable=True)
    email = Column(String(191), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=True)
    first_name = Column(String(191), nullable=True)
    last_name = Column(String(191), nullable=True)
    picture = Column(String(1024), nullable=True)
    locale = Column(String(20), default="en_US", nullable=True)
    status = Column(String(20), default="active", nullable=False)
    email_verified_at = Column(DateTime, nullable=True)

    reset_token = Column(String(255), nullable=True)
    reset_token_prefix = Column(String(16), nullable=True, index=True)
    reset_token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    roles = relationship("Role", secondary=user_roles, lazy="selectin")
    capabilities = relationship("Capability", secondary=user_capabilities, lazy="selectin")

    @property
    def role_slugs(self) -> list[str]:
        return [role.slug for role in self.roles]

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
