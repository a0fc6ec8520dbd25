"""
Store recovery ladder.

Recovery is an ordered list of strategies, each more destructive than the
one before. ``RecoveryPolicy.run`` applies them in order and stops at the
first one whose result passes a health check. Bypass always succeeds, so
the default ladder never leaves the engine wedged.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import StoreEngine

logger = logging.getLogger(__name__)


class RecoveryStrategy(ABC):
    """One rung of the recovery ladder."""

    name: str = "strategy"

    @abstractmethod
    async def apply(self, engine: StoreEngine) -> None:
        """Run the remediation. Raising means the strategy failed."""

    async def verify(self, engine: StoreEngine) -> bool:
        return await engine.health_check()


class SoftReset(RecoveryStrategy):
    """Recreate missing tables, keep existing data."""

    name = "soft_reset"

    async def apply(self, engine: StoreEngine) -> None:
        await engine.soft_reset()


class HardReset(RecoveryStrategy):
    """Delete the store file and rebuild the schema."""

    name = "hard_reset"

    async def apply(self, engine: StoreEngine) -> None:
        await engine.hard_reset()


class EmergencyReset(RecoveryStrategy):
    """Hard reset with longer pauses that tolerates close and delete failures."""

    name = "emergency_reset"

    async def apply(self, engine: StoreEngine) -> None:
        await engine.emergency_reset()


class Bypass(RecoveryStrategy):
    """Give up on persistence so callers keep running."""

    name = "bypass"

    async def apply(self, engine: StoreEngine) -> None:
        engine.enable_bypass()

    async def verify(self, engine: StoreEngine) -> bool:
        return True


@dataclass
class RecoveryOutcome:
    success: bool
    strategy: str | None = None
    attempts: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


DEFAULT_LADDER: tuple[type[RecoveryStrategy], ...] = (SoftReset, HardReset, EmergencyReset, Bypass)


class RecoveryPolicy:
    """Apply recovery strategies in order until one leaves the store usable."""

    def __init__(self, strategies: Sequence[RecoveryStrategy] | None = None):
        self.strategies = (
            list(strategies) if strategies is not None else [cls() for cls in DEFAULT_LADDER]
        )

    async def run(self, engine: StoreEngine) -> RecoveryOutcome:
        outcome = RecoveryOutcome(success=False)

        for strategy in self.strategies:
            outcome.attempts.append(strategy.name)
            logger.warning(f"Store recovery: trying {strategy.name}")
            try:
                await strategy.apply(engine)
                healthy = await strategy.verify(engine)
            except Exception as e:
                logger.error(f"Store recovery: {strategy.name} failed: {e}")
                outcome.errors[strategy.name] = str(e)
                continue

            if healthy:
                logger.info(f"Store recovery succeeded with {strategy.name}")
                outcome.success = True
                outcome.strategy = strategy.name
                return outcome

            logger.error(f"Store recovery: {strategy.name} left the store unhealthy")
            outcome.errors[strategy.name] = "health check failed"

        logger.error(f"Store recovery failed after: {', '.join(outcome.attempts)}")
        return outcome
