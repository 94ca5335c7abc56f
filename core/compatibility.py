"""
Compatibility rules for pairing two waiting users.
Pure functions with no I/O so the matchmaker can call them inside its pool scan.
"""
from typing import List

from core.models import WaitingEntry


def _age_in_range(seeker: WaitingEntry, candidate: WaitingEntry) -> bool:
    """Check the seeker's declared age range against the candidate's age."""
    age_range = seeker.preferences.age_range if seeker.preferences else None
    age = candidate.profile.age
    if not age_range or age is None:
        return True
    low, high = age_range
    return low <= age <= high


def _declared_interests(entry: WaitingEntry) -> List[str]:
    if entry.preferences and entry.preferences.interests:
        return entry.preferences.interests
    return entry.profile.interests or []


def is_compatible(a: WaitingEntry, b: WaitingEntry) -> bool:
    """
    Decide whether two waiting users may be matched.

    A user without preferences accepts anyone, so the pair is compatible
    when either side has none. Otherwise each declared age range must
    contain the other side's age, and when both sides list interests they
    must share at least one. Every check is applied in both directions.

    Args:
        a: First waiting entry
        b: Second waiting entry

    Returns:
        True if the pair may be matched
    """
    if a.preferences is None or b.preferences is None:
        return True

    if not _age_in_range(a, b) or not _age_in_range(b, a):
        return False

    interests_a = _declared_interests(a)
    interests_b = _declared_interests(b)
    if interests_a and interests_b:
        if not set(interests_a) & set(interests_b):
            return False

    return True
