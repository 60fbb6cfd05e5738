"""ProductPage model - a product detail page under monitoring."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


# Aggregate health values
PAGE_STATUSES = ("pending", "healthy", "warning", "critical", "error")


class ProductPage(Base):
    """A monitored product page. Soft-deleted pages keep their history."""

    __tablename__ = "product_pages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False)
    title = Column(String, nullable=False)
    url = Column(String, nullable=False)  # Absolute URL or storefront path
    monitoring_enabled = Column(Boolean, default=True)
    status = Column(String, default="pending")  # pending, healthy, warning, critical, error
    last_scanned_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    shop = relationship("Shop", back_populates="product_pages")
    scans = relationship("Scan", back_populates="product_page", cascade="all, delete-orphan")
    issues = relationship("Issue", back_populates="product_page", cascade="all, delete-orphan")

    def scannable_url(self, storefront_url: str) -> str:
        """Full URL handed to the scan engine."""
        if self.url.startswith("http"):
            return self.url
        return f"{storefront_url}{self.url}"


def visible_pages():
    """Predicate for pages that have not been soft-deleted.

    Passed explicitly into every query that looks pages up.
    """
    return ProductPage.deleted_at.is_(None)
