"""Fold partial enrichment payloads into the accumulating briefing record.

Each field of a payload is optional per update. A field only replaces the
previous value when the payload supplies a non-empty value for it, so a
partial update never erases information the user has already seen. The
quality score additionally never goes down.
"""

import logging
import math
from typing import Any

from src.onboarding.models import BriefingRecord, ObjectionResponse
from src.onboarding.status_classifier import (
    enrichment_meta,
    extract_enrichment_status,
    profile_section,
)

logger = logging.getLogger(__name__)

# Record field → payload keys, first non-empty wins
_LIST_FIELDS: dict[str, tuple[str, ...]] = {
    "target_audience": ("targetAudience",),
    "target_audience_segments": ("targetAudienceSegments",),
    "call_angles": ("callAngles",),
    "competitors": ("competitors",),
    "unique_selling_points": ("uniqueSellingPoints",),
    "decision_makers": ("decisionMakers",),
    "next_actions": ("nextActions", "opportunities"),
}

_CONFIDENCE_LEVELS = frozenset({"low", "medium", "high"})


def _clean_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _clean_list(value: Any) -> list[str]:
    """Normalize a string-or-list value into a list of non-blank strings."""
    if isinstance(value, str):
        text = _clean_text(value)
        return [text] if text else []
    if not isinstance(value, list):
        return []
    return [text for text in (_clean_text(item) for item in value) if text]


def _clean_objections(value: Any) -> list[ObjectionResponse]:
    if not isinstance(value, list):
        return []
    objections: list[ObjectionResponse] = []
    for item in value:
        if isinstance(item, dict):
            objection = _clean_text(item.get("objection"))
            if objection:
                objections.append(
                    ObjectionResponse(
                        objection=objection,
                        response=_clean_text(item.get("response")) or "",
                    )
                )
        elif text := _clean_text(item):
            objections.append(ObjectionResponse(objection=text))
    return objections


def _as_number(value: Any) -> float | None:
    # bool is an int subclass; a stray True must not read as a score of 1
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _quality_score(payload: dict[str, Any], profile: dict[str, Any]) -> float | None:
    candidates = (
        enrichment_meta(payload).get("qualityScore"),
        profile.get("qualityScore"),
    )
    for candidate in candidates:
        score = _as_number(candidate)
        if score is not None:
            return score
    return None


def merge(previous: BriefingRecord, payload: dict[str, Any]) -> BriefingRecord:
    """Merge one profile payload into the briefing record.

    Pure reducer: ``previous`` is never modified.

    Args:
        previous: Record accumulated so far.
        payload: Raw JSON object from the profile-context endpoint.

    Returns:
        A new record with every non-empty payload field adopted and every
        other field carried over from ``previous``.
    """
    profile = profile_section(payload)
    meta = enrichment_meta(payload)
    update: dict[str, Any] = {}

    snapshot = _clean_text(profile.get("companyDescription")) or _clean_text(
        profile.get("companySnapshot")
    )
    if snapshot:
        update["company_snapshot"] = snapshot

    for field_name, keys in _LIST_FIELDS.items():
        for key in keys:
            values = _clean_list(profile.get(key))
            if values:
                update[field_name] = values
                break

    objections = _clean_objections(profile.get("objectionHandling"))
    if objections:
        update["objections"] = objections

    score = _quality_score(payload, profile)
    if score is not None and score >= previous.quality_score:
        update["quality_score"] = score

    status = extract_enrichment_status(payload)
    if status:
        update["enrichment_status"] = status

    confidence = _clean_text(meta.get("confidence"))
    if confidence and confidence.lower() in _CONFIDENCE_LEVELS:
        update["confidence"] = confidence.lower()

    error_code = _clean_text(meta.get("errorCode")) or _clean_text(
        profile.get("enrichmentErrorCode")
    )
    if error_code:
        update["error_code"] = error_code

    attempts = _as_number(meta.get("attempts"))
    if attempts is not None and attempts > 0:
        update["server_attempts"] = int(attempts)

    last_updated = _clean_text(meta.get("lastUpdated")) or _clean_text(profile.get("lastUpdated"))
    if last_updated:
        update["last_updated"] = last_updated

    if not update:
        return previous.model_copy()

    logger.debug("Merged briefing fields: %s", sorted(update))
    return previous.model_copy(update=update)
