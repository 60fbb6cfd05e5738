"""Scan model - one scan run against a product page."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from ..database import Base


class Scan(Base):
    """A single scan run. Immutable after completion apart from the analysis summary."""

    __tablename__ = "scans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_page_id = Column(Integer, ForeignKey("product_pages.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")  # pending, running, completed, failed
    scan_depth = Column(String, nullable=False, default="quick")  # quick, deep
    attempt = Column(Integer, default=1)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    page_load_time_ms = Column(Integer, nullable=True)
    js_errors = Column(JSON, nullable=True)
    network_errors = Column(JSON, nullable=True)
    console_logs = Column(JSON, nullable=True)
    html_snapshot_ref = Column(String, nullable=True)
    screenshot_ref = Column(String, nullable=True)
    detection_results = Column(JSON, nullable=True)  # Raw detector output
    analysis_summary = Column(JSON, nullable=True)  # Written by AI page analysis
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    product_page = relationship("ProductPage", back_populates="scans")
    issues = relationship("Issue", back_populates="scan")

    def start(self):
        self.status = "running"
        self.started_at = datetime.utcnow()

    def complete(self, **attributes):
        self.status = "completed"
        self.completed_at = datetime.utcnow()
        for key, value in attributes.items():
            setattr(self, key, value)

    def fail(self, message: str):
        self.status = "failed"
        self.completed_at = datetime.utcnow()
        self.error_message = message

    @property
    def duration_seconds(self) -> float | None:
        if not self.started_at or not self.completed_at:
            return None
        return round((self.completed_at - self.started_at).total_seconds(), 2)
