from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from hookcms.database import Base
from hookcms.utils.dates import utcnow


class PluginMigration(Base):
    """One row per migration file an extension has run."""

    __tablename__ = "plugin_migrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plugin_slug = Column(String(100), nullable=False, index=True)
    migration_name = Column(String(191), nullable=False)
    batch = Column(Integer, nullable=False)
    ran_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("plugin_slug", "migration_name", name="uq_plugin_migrations_name"),)
