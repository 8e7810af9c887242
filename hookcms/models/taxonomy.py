from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from hookcms.database import Base
from hookcms.utils.dates import utcnow


class Taxonomy(Base):
    __tablename__ = "taxonomies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(100), nullable=False)
    post_type_slug = Column(String(100), nullable=False)
    name_singular = Column(String(191), nullable=True)
    name_plural = Column(String(191), nullable=True)
    description = Column(Text, nullable=True)
    show_in_menu = Column(Boolean, default=True, nullable=False)
    icon = Column(Text, nullable=True)
    badge = Column(Integer, default=0, nullable=True)
    position = Column(Integer, default=0, nullable=True)
    capabilities = Column(JSON, nullable=True)
    priority = Column(Integer, default=5, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("slug", "post_type_slug", name="uq_taxonomies_slug"),)


class TaxonomyField(Base):
    __tablename__ = "taxonomy_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)
    taxonomy_slug = Column(String(100), nullable=False, index=True)
    post_type_slug = Column(String(100), nullable=False)
    name = Column(String(191), nullable=True)
    slug = Column(String(100), nullable=False)
    type = Column(String(50), default="text", nullable=False)
    options = Column(JSON, nullable=True)
    required = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=5, nullable=False)
    order = Column(Integer, default=1000, nullable=True)

    __table_args__ = (
        UniqueConstraint("slug", "taxonomy_slug", "post_type_slug", name="uq_taxonomy_fields_slug"),
    )


class Term(Base):
    __tablename__ = "terms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    taxonomy_slug = Column(String(100), nullable=False)
    post_type_slug = Column(String(100), nullable=False)
    slug = Column(String(191), nullable=True)
    status = Column(String(20), default="published", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint("slug", "taxonomy_slug", "post_type_slug", name="uq_terms_slug"),)


class TermMeta(Base):
    __tablename__ = "term_meta"

    id = Column(Integer, primary_key=True, autoincrement=True)
    term_id = Column(Integer, ForeignKey("terms.id", ondelete="CASCADE"), nullable=False)
    field_slug = Column(String(100), nullable=False)
    value = Column(Text, nullable=True)

    __table_args__ = (Index("idx_term_meta_term_field", "term_id", "field_slug"),)


class TermRelationship(Base):
    __tablename__ = "term_relationships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    term_id = Column(Integer, ForeignKey("terms.id", ondelete="CASCADE"), nullable=False)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("term_id", "post_id", name="uq_term_relationships"),)
