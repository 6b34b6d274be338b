"""
Append-only log of domain events.

Written in the same transaction as the change that raised the event,
so the log never disagrees with the data.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Index, event

from lms.core.db_types import UniversalJSON
from lms.orm.base import BaseModel


class DomainEventLog(BaseModel):
    __tablename__ = "domain_event_log"

    event_name = Column(String(100), nullable=False, index=True)
    aggregate_type = Column(String(50), nullable=False)
    aggregate_id = Column(Integer, nullable=False)
    actor_id = Column(Integer, nullable=True)
    payload = Column(UniversalJSON, nullable=False, default=dict)
    occurred_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_domain_event_log_aggregate", "aggregate_type", "aggregate_id"),
    )

    def __repr__(self):
        return f"<DomainEventLog(id={self.id}, event={self.event_name}, aggregate={self.aggregate_type}:{self.aggregate_id})>"


@event.listens_for(DomainEventLog, "before_update")
def _prevent_update(mapper, connection, target):
    raise RuntimeError("domain_event_log is append-only")


@event.listens_for(DomainEventLog, "before_delete")
def _prevent_delete(mapper, connection, target):
    raise RuntimeError("domain_event_log is append-only")
