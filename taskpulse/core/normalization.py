"""
Owner-name normalisation and operator-account exclusion.
"""

import logging
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


def clean_owner_name(full_name: Optional[str]) -> str:
    """Keep only the part before the first '|' ("Jane | GCS Operator" -> "Jane")."""
    if not full_name:
        return ""
    return full_name.split("|", 1)[0].strip()


def build_display_name(
    user_id: str,
    first_name: Optional[str],
    last_name: Optional[str],
    *fallbacks: Optional[str],
) -> str:
    """
    Build a user's display name from first + last name.

    Falls back to the first non-empty value in ``fallbacks`` (username,
    email) and finally to a synthetic ``User <id>`` label.
    """
    full_name = f"{first_name or ''} {last_name or ''}".strip()
    name = clean_owner_name(full_name)
    if name:
        return name
    for candidate in fallbacks:
        if candidate and candidate.strip():
            return candidate.strip()
    return fallback_owner_label(user_id)


def fallback_owner_label(owner_id: str) -> str:
    return f"User {owner_id}"


def locale_sort_key(name: str) -> Tuple[str, str]:
    """
    Sort key approximating a locale-aware comparison.

    Accents and case are ignored at the primary level ("Élodie" sorts with
    "elodie"); the raw string breaks ties.
    """
    decomposed = unicodedata.normalize("NFKD", name)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), name


@dataclass(frozen=True)
class ExclusionDecision:
    owner_id: str
    display_name: str
    by_id: bool
    by_name: bool

    @property
    def excluded(self) -> bool:
        return self.by_id or self.by_name

    @property
    def disagrees(self) -> bool:
        return self.by_id != self.by_name


def check_owner_exclusion(
    owner_id: str,
    display_name: str,
    excluded_ids: Iterable[str],
    excluded_name_fragments: Iterable[str],
) -> ExclusionDecision:
    """
    Evaluate both exclusion rules independently.

    An owner is excluded if either rule matches. When only one matches, the
    mismatch is logged at WARNING.
    """
    by_id = str(owner_id) in {str(i) for i in excluded_ids}
    lowered = (display_name or "").casefold()
    by_name = any(
        fragment.casefold() in lowered
        for fragment in excluded_name_fragments
        if fragment
    )
    decision = ExclusionDecision(
        owner_id=str(owner_id),
        display_name=display_name,
        by_id=by_id,
        by_name=by_name,
    )
    if decision.disagrees:
        logger.warning(
            "Owner exclusion rules disagree for owner %s (%r): by_id=%s by_name=%s",
            owner_id,
            display_name,
            by_id,
            by_name,
        )
    return decision


__all__ = [
    "clean_owner_name",
    "build_display_name",
    "fallback_owner_label",
    "locale_sort_key",
    "ExclusionDecision",
    "check_owner_exclusion",
]
