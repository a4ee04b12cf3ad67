"""
Verification Parser - Anchor-phrase extraction from verification responses

Responsibilities:
- Read the overall assessment from the 'ASSESSMENT:' anchor
- Classify each checklist line by its marker glyph
- Extract the FINDINGS and RECOMMENDATIONS sections
- Report whether the expected anchors were found

Design principles:
- Never raises on model output: a missing anchor is recorded as "unclear"
- Raw text is returned unchanged alongside the extraction
- Named capture rules live in one table so the prompt contract can evolve here
"""

import logging
import re
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# Overall status values
STATUS_VERIFIED = "verified"
STATUS_ISSUES = "issues"
STATUS_FAILED = "failed"
STATUS_UNCLEAR = "unclear"

ASSESSMENT_STATUS = {
    "VERIFIED": STATUS_VERIFIED,
    "ISSUES": STATUS_ISSUES,
    "INSUFFICIENT": STATUS_FAILED,
}

# Checklist item values
ITEM_MET = "met"
ITEM_UNCLEAR = "unclear"
ITEM_NOT_MET = "not_met"

# Marker legend; the warning sign may arrive with or without its variation selector
MARKER_STATUS = {
    "✅": ITEM_MET,
    "⚠️": ITEM_UNCLEAR,
    "⚠": ITEM_UNCLEAR,
    "❌": ITEM_NOT_MET,
}

# key -> line label requested by the prompt
CHECKLIST_LABELS = (
    ("coverage_amount", "Coverage Amount"),
    ("hospitalization", "Hospitalization"),
    ("repatriation", "Repatriation"),
    ("schengen", "Schengen Coverage"),
    ("duration", "Duration"),
    ("deductible", "Deductible"),
)

ASSESSMENT_PATTERN = re.compile(r"ASSESSMENT:\s*\**\s*(VERIFIED|ISSUES|INSUFFICIENT)", re.IGNORECASE)
FINDINGS_PATTERN = re.compile(r"FINDINGS:\s*\n(.*?)(?=\n\s*RECOMMENDATIONS:|\Z)", re.DOTALL)
RECOMMENDATIONS_PATTERN = re.compile(r"RECOMMENDATIONS:\s*\n(.*?)(?=\n\s*IMPORTANT NOTES:|\Z)", re.DOTALL)

_MARKERS = "|".join(re.escape(m) for m in sorted(MARKER_STATUS, key=len, reverse=True))
CHECKLIST_PATTERNS = {
    key: re.compile(rf"{re.escape(label)}:\s*({_MARKERS})\s*(.*?)[ \t]*(?=\n|$)")
    for key, label in CHECKLIST_LABELS
}


def parse_verification(raw_text: str) -> Dict[str, Any]:
    """
    Extract the structured verification result.

    Args:
        raw_text: Full model response

    Returns:
        dict with:
            status: verified | issues | failed | unclear
            checklist: {key: {status, icon, detail}} for every checklist key
            findings: FINDINGS section text ('' when absent)
            recommendations: RECOMMENDATIONS section text ('' when absent)
            missing_anchors: anchors that were not found
            raw_response: raw_text, unchanged
    """
    text = raw_text or ""
    missing: List[str] = []

    match = ASSESSMENT_PATTERN.search(text)
    if match:
        status = ASSESSMENT_STATUS[match.group(1).upper()]
    else:
        status = STATUS_UNCLEAR
        missing.append("ASSESSMENT")

    checklist = {}
    for key, label in CHECKLIST_LABELS:
        item_match = CHECKLIST_PATTERNS[key].search(text)
        if item_match:
            icon = item_match.group(1)
            checklist[key] = {
                "status": MARKER_STATUS[icon],
                "icon": icon,
                "detail": item_match.group(2).strip(),
            }
        else:
            checklist[key] = {"status": ITEM_UNCLEAR, "icon": None, "detail": ""}
            missing.append(label)

    findings = _section(FINDINGS_PATTERN, text)
    if not findings:
        missing.append("FINDINGS")

    recommendations = _section(RECOMMENDATIONS_PATTERN, text)
    if not recommendations:
        missing.append("RECOMMENDATIONS")

    if missing:
        logger.warning(f"Verification response missing anchors: {missing}")

    return {
        "status": status,
        "checklist": checklist,
        "findings": findings,
        "recommendations": recommendations,
        "missing_anchors": missing,
        "raw_response": raw_text,
    }


def _section(pattern: re.Pattern, text: str) -> str:
    match = pattern.search(text)
    return match.group(1).strip() if match else ""
