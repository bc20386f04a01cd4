"""
Daily spin wheel: a fixed discrete probability table and its draw.

The table is configuration (REWARDMAN["SPIN_TABLE"]), validated against the
program ceilings on construction. Drawing takes an injected random source so
the distribution can be checked with seeded generators, independent of the
engine that records spins.
"""

import math
import random
from dataclasses import dataclass

from django.core.exceptions import ImproperlyConfigured

PROBABILITY_TOLERANCE = 1e-9


@dataclass(frozen=True)
class SpinOutcome:
    """One segment of the wheel."""

    label: str
    points: int
    probability: float
    is_jackpot: bool = False


class SpinTable:
    """
    Ordered outcomes whose probabilities sum to 1.0.

    Usage:
        table = SpinTable.from_settings()
        outcome = table.draw(random.Random(7))
    """

    def __init__(
        self,
        outcomes: list[SpinOutcome],
        jackpot_ceiling: float | None = None,
        expected_value_ceiling: float | None = None,
    ):
        self.outcomes = tuple(outcomes)
        self._validate(jackpot_ceiling, expected_value_ceiling)

    @classmethod
    def from_config(cls, rows, jackpot_ceiling=None, expected_value_ceiling=None) -> "SpinTable":
        try:
            outcomes = [
                SpinOutcome(
                    label=str(row["label"]),
                    points=int(row["points"]),
                    probability=float(row["probability"]),
                    is_jackpot=bool(row.get("jackpot", False)),
                )
                for row in rows
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise ImproperlyConfigured(f"Invalid SPIN_TABLE row: {exc}") from exc
        return cls(outcomes, jackpot_ceiling, expected_value_ceiling)

    @classmethod
    def from_settings(cls) -> "SpinTable":
        from rewardman.conf import rewardman_settings

        return cls.from_config(
            rewardman_settings.SPIN_TABLE,
            jackpot_ceiling=rewardman_settings.JACKPOT_PROBABILITY_CEILING,
            expected_value_ceiling=rewardman_settings.SPIN_EXPECTED_VALUE_CEILING,
        )

    # ------------------------------------------------------------------
    # Properties of the distribution
    # ------------------------------------------------------------------

    @property
    def expected_value(self) -> float:
        return sum(o.points * o.probability for o in self.outcomes)

    @property
    def jackpot_probability(self) -> float:
        return sum(o.probability for o in self.outcomes if o.is_jackpot)

    @property
    def fallback(self) -> SpinOutcome:
        """Lowest-value outcome (first one on ties)."""
        return min(self.outcomes, key=lambda o: o.points)

    def _validate(self, jackpot_ceiling, expected_value_ceiling) -> None:
        if not self.outcomes:
            raise ImproperlyConfigured("SPIN_TABLE must have at least one outcome")

        labels = [o.label for o in self.outcomes]
        if len(set(labels)) != len(labels):
            raise ImproperlyConfigured(f"SPIN_TABLE labels must be unique: {labels}")

        for outcome in self.outcomes:
            if outcome.points < 0:
                raise ImproperlyConfigured(f"Outcome {outcome.label!r} has negative points")
            if not (0 < outcome.probability <= 1) or math.isnan(outcome.probability):
                raise ImproperlyConfigured(
                    f"Outcome {outcome.label!r} probability must be in (0, 1]"
                )

        total = math.fsum(o.probability for o in self.outcomes)
        if abs(total - 1.0) > PROBABILITY_TOLERANCE:
            raise ImproperlyConfigured(f"SPIN_TABLE probabilities sum to {total}, expected 1.0")

        if jackpot_ceiling is not None and self.jackpot_probability > jackpot_ceiling + PROBABILITY_TOLERANCE:
            raise ImproperlyConfigured(
                f"Jackpot probability {self.jackpot_probability} exceeds ceiling {jackpot_ceiling}"
            )
        if expected_value_ceiling is not None and self.expected_value > expected_value_ceiling:
            raise ImproperlyConfigured(
                f"Expected value per spin {self.expected_value} exceeds ceiling {expected_value_ceiling}"
            )

    # ------------------------------------------------------------------
    # Draw
    # ------------------------------------------------------------------

    def draw(self, rng: random.Random) -> SpinOutcome:
        """
        Draw one outcome.

        Uses a single uniform value in [0, 1) and walks the cumulative mass;
        the first outcome whose cumulative probability meets or exceeds the
        value wins. Falls back to the lowest-value outcome if float drift
        leaves the walk without a match.
        """
        value = rng.random()
        cumulative = 0.0
        for outcome in self.outcomes:
            cumulative += outcome.probability
            if cumulative >= value:
                return outcome
        return self.fallback
