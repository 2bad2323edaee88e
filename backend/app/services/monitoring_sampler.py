"""
Monitoring Sampler - decides which sessions are observed right now
"""

import logging
import math
import random
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from app.config import MonitoringConfig
from app.models.proctoring import PoolSummary, utcnow
from app.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class MonitoringSampler:
    """
    Random sample-based monitoring.

    Every resample draws a fresh uniform permutation of the active students;
    there is no stickiness between rotations. A student observed in one window
    may or may not be observed in the next.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config: MonitoringConfig,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.config = config
        self.rng = rng or random.Random()
        self._clock = clock
        self.next_rotation: Optional[datetime] = None

    def compute_observed_count(self, total_sessions: int) -> int:
        """
        ceil(total * sample_rate) clamped to [min_monitored, max_monitored],
        never more than the sessions that exist
        """
        if total_sessions <= 0:
            return 0
        # Decimal avoids float artifacts such as ceil(100 * 0.15) == 16
        calculated = math.ceil(Decimal(str(self.config.sample_rate)) * total_sessions)
        clamped = max(
            self.config.min_monitored,
            min(calculated, self.config.max_monitored),
        )
        return min(clamped, total_sessions)

    def schedule_next_rotation(self) -> datetime:
        self.next_rotation = self._clock() + timedelta(minutes=self.config.rotation_interval_minutes)
        return self.next_rotation

    def resample(self) -> Optional[PoolSummary]:
        """
        Recompute the observed set from scratch

        Returns:
            PoolSummary of the new selection, or None when no sessions exist
        """
        student_ids = self.registry.student_ids()
        if not student_ids:
            return None

        count = self.compute_observed_count(len(student_ids))
        shuffled = list(student_ids)
        self.rng.shuffle(shuffled)
        selected = shuffled[:count]

        self.registry.apply_observed_set(selected)
        self.schedule_next_rotation()

        logger.info(
            f"Proctoring monitoring pool updated: {len(selected)}/{len(student_ids)} students "
            f"({len(selected) / len(student_ids) * 100:.1f}%)"
        )

        return PoolSummary(
            total_students=len(student_ids),
            monitored_count=len(selected),
            monitored_students=selected,
            sample_rate=self.config.sample_rate,
            next_rotation=self.next_rotation,
        )

    def summary(self) -> PoolSummary:
        """Current pool state without resampling"""
        observed = self.registry.observed_ids()
        return PoolSummary(
            total_students=len(self.registry),
            monitored_count=len(observed),
            monitored_students=observed,
            sample_rate=self.config.sample_rate,
            next_rotation=self.next_rotation,
        )
