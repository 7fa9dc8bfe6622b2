from datetime import datetime

from sqlalchemy import Column, DateTime


class TimestampMixin:
    # Python-side UTC so sweeps can compare against datetime.utcnow()
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow,
                        onupdate=datetime.utcnow, nullable=False)
