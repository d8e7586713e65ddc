# app/services/fortunes.py
import random
from typing import Dict, Optional, Sequence

FORTUNES = (
    "The blockchain never lies.",
    "Your resources are safe in the Move VM.",
    "Move fast and break things (safely).",
    "A transaction awaits, seize the block.",
    "Your next upgrade will compile on first try.",
    "The oracle speaks: HODL wisdom, not just coins.",
    "Smart contracts make smarter decisions.",
    "Your keys, your fortune.",
)


class FortuneHandler:
    """
    Supplies the paid artifact: one fortune picked from a fixed set.

    Knows nothing about payments. Pass a seeded `random.Random` to pin
    the selection.
    """

    def __init__(
        self,
        fortunes: Sequence[str] = FORTUNES,
        rng: Optional[random.Random] = None
    ):
        if not fortunes:
            raise ValueError("At least one fortune is required")
        self.fortunes = tuple(fortunes)
        self.rng = rng or random.Random()

    def deliver(self) -> Dict[str, str]:
        return {"fortune": self.rng.choice(self.fortunes)}
