from __future__ import annotations

BUCKETS = 100
MULTIPLIER = 31


def user_bucket(user_id: str) -> float:
    """Stable scalar in [0, 1) for a user id: polynomial char-code hash folded into 100 buckets."""
    h = 0
    for ch in user_id:
        h = (h * MULTIPLIER + ord(ch)) % BUCKETS
    return h / BUCKETS


def should_sample(user_id: str, rate: float) -> bool:
    """
    Deterministic per-user sampling.
    The same user id always lands in the same bucket, so a user is either
    always or never captured for a given rate, never half a session.
    """
    if rate <= 0:
        return False
    if rate >= 1:
        return True
    return user_bucket(user_id) < rate
