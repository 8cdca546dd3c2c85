from __future__ import annotations
from typing import Dict, Tuple
import logging

logger = logging.getLogger(__name__)

TECHNOLOGY = "technology"
SITE = "site"


class CooldownRegistry:
    """
    Keyed registry of entities that may not be used until a resume tick.

    Technologies go into cooldown when no site is suitable or every ranked site failed its
    permit negotiation (or when CCS capacity in the node is exhausted); sites go into
    cooldown after a failed permit negotiation. The registry is shared by all agents of a
    model, keyed by (kind, name).

    An entity is blocked while tick < resume tick.
    """

    def __init__(self) -> None:
        self._resume_ticks: Dict[Tuple[str, str], int] = {}

    def block(self, kind: str, name: str, tick: int, duration: int) -> int:
        resume_tick = int(tick) + int(duration)
        self._resume_ticks[(kind, name)] = resume_tick
        logger.debug(f"{kind} {name} blocked until tick {resume_tick}")
        return resume_tick

    def resume_tick(self, kind: str, name: str) -> int:
        return self._resume_ticks.get((kind, name), 0)

    def is_blocked(self, kind: str, name: str, tick: int) -> bool:
        return tick < self.resume_tick(kind, name)

    def release_expired(self, kind: str, name: str, tick: int) -> bool:
        """
        Drop an expired cooldown.

        Returns:
            True if a cooldown was registered and has now been released.
        """
        key = (kind, name)
        if key in self._resume_ticks and self._resume_ticks[key] <= tick:
            del self._resume_ticks[key]
            logger.debug(f"{kind} {name} available again at tick {tick}")
            return True
        return False

    def block_technology(self, technology, tick: int, duration: int) -> int:
        return self.block(TECHNOLOGY, technology.name, tick, duration)

    def technology_available(self, technology, tick: int) -> bool:
        return not self.is_blocked(TECHNOLOGY, technology.name, tick)

    def block_site(self, site, tick: int, duration: int) -> int:
        return self.block(SITE, site.name, tick, duration)

    def site_available(self, site, tick: int) -> bool:
        return not self.is_blocked(SITE, site.name, tick)

    def __len__(self) -> int:
        return len(self._resume_ticks)
