"""Classification of enrichment status strings reported by the server.

The server vocabulary is open: new status strings can appear at any time.
Known strings are partitioned into ready / failed / pending buckets and
everything else lands in ``StatusBucket.UNKNOWN``, which the poll loop
treats as pending.
"""

import logging
from typing import Any

from src.onboarding.models import EnrichmentVerdict, StatusBucket

logger = logging.getLogger(__name__)

READY_STATUSES: frozenset[str] = frozenset({"complete", "live_research", "ok", "limited"})
FAILED_STATUSES: frozenset[str] = frozenset({"failed", "timeout", "error"})
PENDING_STATUSES: frozenset[str] = frozenset(
    {"queued", "in_progress", "pending", "retrying", "unknown"}
)

_seen_unknown_statuses: set[str] = set()


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _normalize(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def profile_section(payload: dict[str, Any]) -> dict[str, Any]:
    """Return the profile substructure of a payload (``aiProfile`` or ``profile``)."""
    ai_profile = payload.get("aiProfile")
    if isinstance(ai_profile, dict):
        return ai_profile
    return _as_dict(payload.get("profile"))


def enrichment_meta(payload: dict[str, Any]) -> dict[str, Any]:
    """Return ``enrichmentMeta`` from the top level, falling back to the profile."""
    meta = payload.get("enrichmentMeta")
    if isinstance(meta, dict) and meta:
        return meta
    return _as_dict(profile_section(payload).get("enrichmentMeta"))


def extract_enrichment_status(payload: dict[str, Any]) -> str | None:
    """Pull the server's enrichment status out of a profile payload.

    Lookup order: ``enrichmentMeta.status``, ``aiProfile.enrichmentMeta.status``,
    then the legacy ``aiProfile.enrichmentStatus`` field.
    """
    profile = profile_section(payload)
    candidates = (
        _as_dict(payload.get("enrichmentMeta")).get("status"),
        _as_dict(profile.get("enrichmentMeta")).get("status"),
        profile.get("enrichmentStatus"),
    )
    for candidate in candidates:
        status = _normalize(candidate)
        if status:
            return status
    return None


def classify_status(status: str | None) -> StatusBucket:
    """Map a raw status string onto its bucket."""
    normalized = _normalize(status)
    if normalized is None:
        return StatusBucket.UNKNOWN
    if normalized in READY_STATUSES:
        return StatusBucket.READY
    if normalized in FAILED_STATUSES:
        return StatusBucket.FAILED
    if normalized in PENDING_STATUSES:
        return StatusBucket.PENDING
    if normalized not in _seen_unknown_statuses:
        _seen_unknown_statuses.add(normalized)
        logger.warning("Unrecognised enrichment status '%s', treating as pending", normalized)
    return StatusBucket.UNKNOWN


def classify(payload: dict[str, Any]) -> EnrichmentVerdict:
    """Decide whether a profile payload ends the poll loop.

    Args:
        payload: Raw JSON object from the profile-context endpoint.

    Returns:
        READY if the profile is enriched or the status is a success status,
        FAILED for an explicit server failure, PENDING otherwise.
    """
    if payload.get("profileEnriched") is True:
        return EnrichmentVerdict.READY

    bucket = classify_status(extract_enrichment_status(payload))
    if bucket is StatusBucket.READY:
        return EnrichmentVerdict.READY
    if bucket is StatusBucket.FAILED:
        return EnrichmentVerdict.FAILED
    return EnrichmentVerdict.PENDING
