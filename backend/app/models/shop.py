"""Shop model - the tenant that owns monitored pages."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship

from ..database import Base


class Shop(Base):
    """A storefront whose product pages are monitored."""

    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=True)  # Owner email from the platform
    alert_email = Column(String, nullable=True)  # Overrides owner email for alerts
    billing_status = Column(String, default="trial")  # trial, active, frozen, cancelled
    trial_ends_at = Column(DateTime, nullable=True)
    billing_exempt = Column(Boolean, default=False)
    email_alerts_enabled = Column(Boolean, default=True)
    admin_alerts_enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    product_pages = relationship("ProductPage", back_populates="shop", cascade="all, delete-orphan")
    alerts = relationship("Alert", back_populates="shop", cascade="all, delete-orphan")

    @property
    def effective_alert_email(self) -> str | None:
        """Alert recipient, falling back to the owner email."""
        return self.alert_email or self.email

    @property
    def storefront_url(self) -> str:
        return f"https://{self.domain}"
