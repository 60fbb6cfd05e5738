"""Exceptions raised by the scan pipeline."""


class PipelineError(Exception):
    """Base class for scan pipeline errors."""


class ScanEngineError(PipelineError):
    """The scan engine could not load the page."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class PageNotFoundError(PipelineError):
    """The product page no longer exists. Never retried."""

    def __init__(self, page_id: int):
        super().__init__(f"Product page {page_id} not found")
        self.page_id = page_id


class IssueStateError(PipelineError):
    """A manual issue transition is not allowed in the current state."""
