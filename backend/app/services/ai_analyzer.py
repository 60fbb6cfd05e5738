"""AI analyzer - asks Gemini to look at a product page.

Two modes:
- page analysis: screenshot + detector output -> findings for every problem seen
- issue analysis: one issue (+ screenshot for high severity) -> explanation,
  suggested fix and, for high severity, a confirmation verdict

Without an API key the analyzer reports itself unavailable and returns
skipped results. HTTP and parsing failures raise AiAnalyzerError; callers
are expected to catch it.
"""
import base64
import json
import logging
from typing import Iterable, Optional

import httpx

from ..config import settings
from ..schemas.ai import AiFinding, IssueAnalysis, PageAnalysis
from ..schemas.scan_engine import RawFinding
from .classifier import CHECK_TO_ISSUE

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

# AI issue type -> our issue type
AI_ISSUE_TYPE_MAP = {
    "missing_atc": "missing_add_to_cart",
    "atc_not_functional": "atc_not_functional",
    "missing_price": "missing_price",
    "wrong_price": "missing_price",
    "broken_images": "missing_images",
    "missing_images": "missing_images",
    "checkout_broken": "checkout_broken",
    "variant_broken": "variant_selection_broken",
    "layout_broken": "js_error",
    "error_message": "js_error",
}


class AiAnalyzerError(Exception):
    """Gemini returned an error or an unreadable response."""


class GeminiAnalyzer:
    """Client for Gemini generateContent with JSON responses."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        min_confidence: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.timeout = timeout or settings.ai_request_timeout
        self.min_confidence = min_confidence if min_confidence is not None else settings.ai_min_confidence
        self._transport = transport

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def analyze_page(
        self,
        page_title: str,
        shop_domain: str,
        raw_findings: Iterable[RawFinding],
        screenshot: Optional[bytes],
    ) -> PageAnalysis:
        """Find every purchase-blocking problem visible on the page."""
        if not self.available:
            return PageAnalysis(reason="AI not configured")
        if not screenshot:
            return PageAnalysis(reason="No screenshot")

        raw_findings = list(raw_findings)
        prompt = self._build_page_prompt(page_title, shop_domain, raw_findings)
        parsed = await self._generate(prompt, screenshot)
        return self._parse_page_response(parsed, raw_findings)

    async def analyze_issue(
        self,
        issue_type: str,
        severity: str,
        title: str,
        evidence: Optional[dict],
        page_title: str,
        shop_domain: str,
        screenshot: Optional[bytes] = None,
    ) -> IssueAnalysis:
        """Explain one issue; high severity issues with a screenshot also get confirmed."""
        if not self.available:
            return IssueAnalysis(skipped=True, reasoning="AI not configured")

        with_confirmation = severity == "high" and screenshot is not None
        if with_confirmation:
            prompt = self._build_confirmation_prompt(issue_type, title, evidence, page_title, shop_domain)
            parsed = await self._generate(prompt, screenshot)
        else:
            prompt = self._build_text_prompt(issue_type, severity, title, evidence, page_title, shop_domain)
            parsed = await self._generate(prompt)

        analysis = IssueAnalysis(
            merchant_explanation=parsed.get("merchant_explanation"),
            suggested_fix=parsed.get("suggested_fix"),
        )
        if with_confirmation:
            analysis.confirmed = parsed.get("confirmed")
            confidence = parsed.get("confidence")
            analysis.confidence = float(confidence) if confidence is not None else None
            analysis.reasoning = parsed.get("reasoning")
        return analysis

    async def _generate(self, prompt: str, screenshot: Optional[bytes] = None) -> dict:
        """POST to Gemini and return the JSON object it produced."""
        parts = [{"text": prompt}]
        if screenshot:
            parts.append({
                "inline_data": {
                    "mime_type": "image/png",
                    "data": base64.b64encode(screenshot).decode("ascii"),
                }
            })

        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseMimeType": "application/json"},
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                GEMINI_URL.format(model=self.model),
                json=body,
                headers={"x-goog-api-key": self.api_key},
            )

        if response.status_code >= 400:
            raise AiAnalyzerError(f"Gemini API error {response.status_code}: {response.text[:500]}")

        try:
            text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
            parsed = json.loads(text)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise AiAnalyzerError(f"Unreadable Gemini response: {e}") from e

        if not isinstance(parsed, dict):
            raise AiAnalyzerError("Gemini response is not a JSON object")
        return parsed

    def _parse_page_response(self, parsed: dict, raw_findings: list) -> PageAnalysis:
        programmatic_types = set()
        for finding in raw_findings:
            mapping = CHECK_TO_ISSUE.get(finding.check)
            if finding.status == "fail" and mapping:
                programmatic_types.add(mapping[0])

        findings = []
        for ai_issue in parsed.get("issues") or []:
            our_type = AI_ISSUE_TYPE_MAP.get(ai_issue.get("type"))
            if not our_type:
                continue
            try:
                confidence = float(ai_issue.get("confidence") or 0)
            except (TypeError, ValueError):
                continue
            if confidence < self.min_confidence:
                continue

            severity = ai_issue.get("severity")
            findings.append(AiFinding(
                issue_type=our_type,
                severity=severity if severity in ("high", "medium", "low") else "medium",
                confidence=confidence,
                description=ai_issue.get("description"),
                merchant_explanation=ai_issue.get("merchant_explanation"),
                suggested_fix=ai_issue.get("suggested_fix"),
                new_finding=our_type not in programmatic_types,
            ))

        return PageAnalysis(
            findings=findings,
            summary=parsed.get("summary"),
            page_healthy=parsed.get("page_healthy"),
        )

    def _build_page_prompt(self, page_title: str, shop_domain: str, raw_findings: list) -> str:
        summary = "\n".join(
            f"  - {f.check}: {f.status} - {f.details.message}" for f in raw_findings
        )
        return f"""You are a store quality analyst. Analyze this product page screenshot and identify ALL issues that could prevent a customer from purchasing.

Store: {shop_domain}
Product: {page_title}

Our automated checks found:
{summary}

Look at the screenshot carefully and identify ANY of these issues:
1. Is the Add to Cart button visible and usable? Or is it missing/hidden/broken?
2. Is the product price visible and correct (not $0.00, not missing)?
3. Are product images loading correctly?
4. Are there any error messages visible on the page?
5. Is the layout broken or elements overlapping?
6. Is there anything else that would prevent a customer from buying?

IMPORTANT: Be precise. Only report issues you can actually see in the screenshot.
If everything looks fine, return an empty issues array.

Respond in JSON format only:
{{"issues": [{{"type": "{'|'.join(AI_ISSUE_TYPE_MAP)}", "severity": "high|medium|low", "confidence": 0.0-1.0, "description": "...", "merchant_explanation": "...", "suggested_fix": "..."}}], "page_healthy": true/false, "summary": "1-2 sentence summary for the merchant"}}
"""

    def _build_confirmation_prompt(
        self, issue_type: str, title: str, evidence: Optional[dict], page_title: str, shop_domain: str
    ) -> str:
        return f"""You are a store advisor who helps non-technical merchants understand issues with their product pages. Analyze this screenshot of a product page.

Product: {page_title}
Store: {shop_domain}

A scan detected the following issue:
- Issue type: {issue_type}
- Title: {title}
- Evidence: {json.dumps(evidence or {}, default=str)}

Please provide:
1. CONFIRMATION: Is this issue visible in the screenshot? (true/false)
2. CONFIDENCE: How confident are you? (0.0 to 1.0)
3. REASONING: Brief technical reasoning (1-2 sentences)
4. MERCHANT EXPLANATION: Explain the issue in plain language, 2-3 sentences, calm and helpful.
5. SUGGESTED FIX: Numbered, safe, reversible steps a non-developer can follow.

Respond in JSON format only:
{{"confirmed": true/false, "confidence": 0.0-1.0, "reasoning": "...", "merchant_explanation": "...", "suggested_fix": "..."}}
"""

    def _build_text_prompt(
        self, issue_type: str, severity: str, title: str, evidence: Optional[dict], page_title: str, shop_domain: str
    ) -> str:
        return f"""You are a store advisor who helps non-technical merchants understand issues with their product pages.

Product: {page_title}
Store: {shop_domain}

A scan detected the following issue:
- Issue type: {issue_type}
- Severity: {severity}
- Title: {title}
- Evidence: {json.dumps(evidence or {}, default=str)}

Please provide:
1. MERCHANT EXPLANATION: Explain the issue in plain language, 2-3 sentences, calm and helpful.
2. SUGGESTED FIX: Numbered, safe, reversible steps a non-developer can follow.

Respond in JSON format only:
{{"merchant_explanation": "...", "suggested_fix": "..."}}
"""


# Global instance
gemini_analyzer = GeminiAnalyzer()
