from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from hookcms.database import Base
from hookcms.utils.dates import utcnow


class Option(Base):
    __tablename__ = "options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(191), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=True)
    autoload = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
