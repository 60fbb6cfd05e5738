"""Database models."""
from .shop import Shop
from .product_page import ProductPage, visible_pages
from .scan import Scan
from .issue import Issue, IssueStatus, Severity, ISSUE_TYPES
from .alert import Alert

__all__ = ["Shop", "ProductPage", "visible_pages", "Scan", "Issue", "IssueStatus", "Severity", "ISSUE_TYPES", "Alert"]
