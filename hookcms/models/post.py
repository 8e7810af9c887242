from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from hookcms.database import Base
from hookcms.utils.dates import utcnow

post_authors = Table(
    "post_authors",
    Base.metadata,
    Column("post_id", Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class PostType(Base):
    __tablename__ = "post_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(100), unique=True, nullable=False)
    name_singular = Column(String(191), nullable=True)
    name_plural = Column(String(191), nullable=True)
    description = Column(Text, nullable=True)
    icon = Column(Text, nullable=True)
    show_in_menu = Column(Boolean, default=True, nullable=False)
    badge = Column(Integer, default=0, nullable=True)
    position = Column(Integer, default=0, nullable=True)
    capabilities = Column(JSON, nullable=True)
    priority = Column(Integer, default=5, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class PostTypeField(Base):
    __tablename__ = "post_type_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_type_slug = Column(String(100), nullable=False, index=True)
    name = Column(String(191), nullable=True)
    slug = Column(String(100), nullable=False)
    type = Column(String(50), default="text", nullable=False)
    options = Column(JSON, nullable=True)
    conditions = Column(JSON, nullable=True)
    required = Column(Boolean, default=False, nullable=False)
    revisions = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=5, nullable=False)
    order = Column(Integer, default=1000, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("post_type_slug", "slug", name="uq_post_type_fields_slug"),)


class Post(Base):
    """Post row; every field value lives in post_meta."""

    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_type_slug = Column(String(100), nullable=False)
    slug = Column(String(191), nullable=True)
    status = Column(String(20), default="draft", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    authors = relationship("User", secondary=post_authors, lazy="selectin")

    __table_args__ = (
        UniqueConstraint("post_type_slug", "slug", name="uq_posts_type_slug"),
        Index("idx_posts_status", "status"),
    )


class PostMeta(Base):
    __tablename__ = "post_meta"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    field_slug = Column(String(100), nullable=False)
    value = Column(Text, nullable=True)

    __table_args__ = (Index("idx_post_meta_post_field", "post_id", "field_slug"),)
