"""Issue model - durable record of a detected problem on a product page."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, Boolean, Float
from sqlalchemy.orm import relationship

from ..database import Base


class Severity(str, enum.Enum):
    """Issue severity, ordered by weight."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def weight(self) -> int:
        return SEVERITY_WEIGHTS[self]

    @property
    def label(self) -> str:
        return f"{self.value.capitalize()} Priority"


SEVERITY_WEIGHTS = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class IssueStatus(str, enum.Enum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


# Statuses that count as the current issue of a type on a page
ACTIVE_STATUSES = (IssueStatus.OPEN.value, IssueStatus.ACKNOWLEDGED.value)


# Default copy per issue type
ISSUE_TYPES = {
    "missing_add_to_cart": {
        "severity": Severity.HIGH,
        "title": "Add to Cart button may not be working",
        "description": "We couldn't find a working Add to Cart button on this page. Customers may not be able to purchase this product.",
    },
    "atc_not_functional": {
        "severity": Severity.HIGH,
        "title": "Add to Cart doesn't add the product",
        "description": "Clicking Add to Cart did not put the product in the cart.",
    },
    "checkout_broken": {
        "severity": Severity.HIGH,
        "title": "Checkout may be broken",
        "description": "We couldn't reach checkout from this product page.",
    },
    "variant_selection_broken": {
        "severity": Severity.HIGH,
        "title": "Variant selector may have issues",
        "description": "The product variant selector might not be working correctly. Customers may have trouble selecting options.",
    },
    "js_error": {
        "severity": Severity.HIGH,
        "title": "JavaScript errors detected",
        "description": "We detected JavaScript errors on this page. This may affect functionality and customer experience.",
    },
    "liquid_error": {
        "severity": Severity.MEDIUM,
        "title": "Liquid template errors detected",
        "description": "There may be template errors on this page. Some content might not display correctly.",
    },
    "missing_images": {
        "severity": Severity.MEDIUM,
        "title": "Product images may not be loading",
        "description": "We couldn't verify that product images are loading correctly. Customers may not see product photos.",
    },
    "missing_price": {
        "severity": Severity.HIGH,
        "title": "Price may not be visible",
        "description": "We couldn't find a visible price on this page. Customers may be confused about the cost.",
    },
    "slow_page_load": {
        "severity": Severity.LOW,
        "title": "Page is loading slowly",
        "description": "This page took longer than expected to load. This may affect customer experience.",
    },
}


class Issue(Base):
    """A detected problem. At most one open or acknowledged issue per (page, type)."""

    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_page_id = Column(Integer, ForeignKey("product_pages.id"), nullable=False, index=True)
    scan_id = Column(Integer, ForeignKey("scans.id"), nullable=True)  # Last scan that observed it
    issue_type = Column(String, nullable=False)
    severity = Column(String, nullable=False)  # high, medium, low
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    evidence = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default=IssueStatus.OPEN.value)
    occurrence_count = Column(Integer, nullable=False, default=1)
    first_detected_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_detected_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String, nullable=True)

    # AI annotation
    ai_confirmed = Column(Boolean, nullable=True)
    ai_confidence = Column(Float, nullable=True)
    ai_reasoning = Column(Text, nullable=True)
    ai_explanation = Column(Text, nullable=True)
    ai_suggested_fix = Column(Text, nullable=True)
    ai_verified_at = Column(DateTime, nullable=True)

    # Relationships
    product_page = relationship("ProductPage", back_populates="issues")
    scan = relationship("Scan", back_populates="issues")
    alerts = relationship("Alert", back_populates="issue", cascade="all, delete-orphan")

    @property
    def severity_level(self) -> Severity:
        return Severity(self.severity)

    @property
    def is_open(self) -> bool:
        return self.status == IssueStatus.OPEN.value

    @property
    def is_high_severity(self) -> bool:
        return self.severity == Severity.HIGH.value

    def clear_ai_annotation(self):
        """Drop AI fields so the next pass re-verifies the issue."""
        self.ai_confirmed = None
        self.ai_confidence = None
        self.ai_reasoning = None
        self.ai_explanation = None
        self.ai_suggested_fix = None
        self.ai_verified_at = None
