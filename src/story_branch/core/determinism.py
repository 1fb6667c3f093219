"""Stable identifiers, seeds, and rolls shared by engine stages."""

from __future__ import annotations

import random
from datetime import UTC, datetime
from hashlib import sha256


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 form."""
    return datetime.now(UTC).isoformat()


def stable_id(*, prefix: str, text: str, length: int = 12) -> str:
    """Build deterministic identifier from normalized text payload."""
    digest = sha256(text.encode("utf-8")).hexdigest()[:length]
    return f"{prefix}_{digest}"


def derive_seed(*parts: object) -> int:
    """Fold arbitrary key parts into a 64-bit seed."""
    payload = "\x1f".join(str(part) for part in parts)
    return int(sha256(payload.encode("utf-8")).hexdigest()[:16], 16)


def stable_roll(*parts: object) -> float:
    """Uniform value in [0, 1) that depends only on the key parts."""
    return derive_seed(*parts) / float(1 << 64)


def seeded_random(*parts: object) -> random.Random:
    return random.Random(derive_seed(*parts))


class FixedRoll:
    """Random source that always returns one caller-chosen draw."""

    def __init__(self, value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise ValueError("A fixed roll must be within [0, 1].")
        self._value = value

    def random(self) -> float:
        return self._value
