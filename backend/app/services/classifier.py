"""Classifier - turns raw detector verdicts into issue candidates.

Pure functions only: no database access, no I/O. Confidence filtering favours
silence over false positives, so anything under the threshold is dropped.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from ..models.issue import ISSUE_TYPES, Severity
from ..schemas.scan_engine import RawFinding

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.7
SLOW_PAGE_THRESHOLD_MS = 5000
SLOW_PAGE_ISSUE_TYPE = "slow_page_load"

# Detector check name -> (issue type, default severity)
CHECK_TO_ISSUE = {
    "add_to_cart": ("missing_add_to_cart", Severity.HIGH),
    "atc_funnel": ("atc_not_functional", Severity.HIGH),
    "checkout": ("checkout_broken", Severity.HIGH),
    "variant_interaction": ("variant_selection_broken", Severity.HIGH),
    "javascript_errors": ("js_error", Severity.HIGH),
    "liquid_errors": ("liquid_error", Severity.MEDIUM),
    "price_visibility": ("missing_price", Severity.HIGH),
    "product_images": ("missing_images", Severity.MEDIUM),
}


@dataclass(frozen=True)
class IssueCandidate:
    """A finding that passed confidence filtering. Not persisted."""
    issue_type: str
    severity: Severity
    confidence: float
    title: str
    description: str
    evidence: dict
    verdict: str  # fail or warning


@dataclass
class Classification:
    """Classifier output for one scan."""
    candidates: List[IssueCandidate] = field(default_factory=list)
    resolved_types: Set[str] = field(default_factory=set)
    ignored_checks: List[str] = field(default_factory=list)

    def candidate_for(self, issue_type: str) -> Optional[IssueCandidate]:
        for candidate in self.candidates:
            if candidate.issue_type == issue_type:
                return candidate
        return None


def _title_for(issue_type: str, message: str) -> str:
    catalogue = ISSUE_TYPES.get(issue_type)
    if catalogue:
        return catalogue["title"]
    return message[:100]


def _build_evidence(finding: RawFinding, scan_id: Optional[int]) -> dict:
    return {
        "confidence": finding.confidence,
        "technical_details": finding.details.technical_details,
        "suggestions": finding.details.suggestions,
        "evidence": finding.details.evidence,
        "scan_id": scan_id,
    }


def classify_raw_findings(
    raw_findings: Iterable[RawFinding],
    threshold: float = CONFIDENCE_THRESHOLD,
    scan_id: Optional[int] = None,
) -> Classification:
    """Map detector verdicts to candidates and resolve signals.

    - fail at or above threshold -> candidate at the check's default severity
    - warning at or above threshold -> low-severity candidate
    - pass -> resolve signal for the mapped type
    - inconclusive, or anything below threshold -> dropped
    - unmapped check names are logged and ignored
    """
    result = Classification()

    for finding in raw_findings:
        mapping = CHECK_TO_ISSUE.get(finding.check)
        if mapping is None:
            logger.warning(f"Ignoring unmapped detector check '{finding.check}'")
            result.ignored_checks.append(finding.check)
            continue

        issue_type, default_severity = mapping
        verdict = finding.status

        if verdict == "pass":
            result.resolved_types.add(issue_type)
            continue

        if verdict not in ("fail", "warning"):
            logger.info(f"Inconclusive result for {finding.check}, skipping")
            continue

        if finding.confidence < threshold:
            logger.info(
                f"Low confidence {finding.check} {verdict} ({finding.confidence}), not creating issue"
            )
            continue

        severity = default_severity if verdict == "fail" else Severity.LOW
        message = finding.details.message
        result.candidates.append(IssueCandidate(
            issue_type=issue_type,
            severity=severity,
            confidence=finding.confidence,
            title=_title_for(issue_type, message),
            description=message or ISSUE_TYPES[issue_type]["description"],
            evidence=_build_evidence(finding, scan_id),
            verdict=verdict,
        ))

    return _dedupe(result)


def classify_load_time(
    load_time_ms: Optional[int],
    threshold_ms: int = SLOW_PAGE_THRESHOLD_MS,
    scan_id: Optional[int] = None,
) -> Classification:
    """Slow-load candidate or resolve signal from the measured load time."""
    result = Classification()
    if load_time_ms is None:
        return result

    if load_time_ms > threshold_ms:
        result.candidates.append(IssueCandidate(
            issue_type=SLOW_PAGE_ISSUE_TYPE,
            severity=Severity.LOW,
            confidence=1.0,
            title=ISSUE_TYPES[SLOW_PAGE_ISSUE_TYPE]["title"],
            description=(
                f"This page took {load_time_ms / 1000.0:.1f} seconds to load. "
                "This may affect customer experience."
            ),
            evidence={
                "load_time_ms": load_time_ms,
                "threshold_ms": threshold_ms,
                "scan_id": scan_id,
            },
            verdict="fail",
        ))
    else:
        result.resolved_types.add(SLOW_PAGE_ISSUE_TYPE)
    return result


def classify_scan(
    raw_findings: Iterable[RawFinding],
    load_time_ms: Optional[int] = None,
    threshold: float = CONFIDENCE_THRESHOLD,
    slow_page_threshold_ms: int = SLOW_PAGE_THRESHOLD_MS,
    scan_id: Optional[int] = None,
) -> Classification:
    """Detector verdicts plus the load-time check, combined."""
    combined = classify_raw_findings(raw_findings, threshold, scan_id)
    load = classify_load_time(load_time_ms, slow_page_threshold_ms, scan_id)
    combined.candidates.extend(load.candidates)
    combined.resolved_types |= load.resolved_types
    return _dedupe(combined)


def _dedupe(result: Classification) -> Classification:
    """Keep one candidate per type (the heaviest) and never resolve a type that has one."""
    best = {}
    for candidate in result.candidates:
        current = best.get(candidate.issue_type)
        if current is None or candidate.severity.weight() > current.severity.weight():
            best[candidate.issue_type] = candidate
    result.candidates = list(best.values())
    result.resolved_types -= set(best)
    return result
