"""Alert model - log of notifications sent for issues."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base


class Alert(Base):
    """Notification for an issue on one channel. One row per (issue, channel)."""

    __tablename__ = "alerts"
    __table_args__ = (
        UniqueConstraint("issue_id", "channel", name="uq_alerts_issue_channel"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False)
    issue_id = Column(Integer, ForeignKey("issues.id"), nullable=False, index=True)
    channel = Column(String, nullable=False)  # email, admin
    delivery_status = Column(String, nullable=False, default="pending")  # pending, sent, failed
    sent_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    shop = relationship("Shop", back_populates="alerts")
    issue = relationship("Issue", back_populates="alerts")

    @property
    def is_sent(self) -> bool:
        return self.delivery_status == "sent"

    def mark_sent(self):
        self.delivery_status = "sent"
        self.sent_at = datetime.utcnow()
        self.error_message = None

    def mark_failed(self, error: str | None = None):
        self.delivery_status = "failed"
        self.error_message = error
