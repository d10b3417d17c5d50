from statistics import mean
from typing import Iterable, List, Optional
from pydantic import BaseModel, Field
from bpff.domain.models import Estimate, JobRecord

# Fewer records than this give wildly unstable projections
MIN_SAMPLES = 3


class AggregateStats(BaseModel):
    """Rolling aggregates derived from the ledger; never persisted on their own.

    Reductions use new/original (lower is better). Unsuccessful records still
    contribute timing data but not reductions.
    """

    speeds: List[float] = Field(default_factory=list)
    reductions: List[float] = Field(default_factory=list)
    durations: List[float] = Field(default_factory=list)
    wall_times: List[float] = Field(default_factory=list)
    record_count: int = 0

    @classmethod
    def from_ledger(cls, ledger: Iterable[JobRecord], in_flight_samples: Iterable[float] = ()) -> "AggregateStats":
        stats = cls()
        for record in ledger:
            stats.record_count += 1
            if record.average_speed > 0:
                stats.speeds.append(record.average_speed)
            if record.media_duration > 0:
                stats.durations.append(record.media_duration)
            if record.elapsed_seconds > 0:
                stats.wall_times.append(record.elapsed_seconds)
            if record.successful and record.original_size > 0:
                stats.reductions.append(min(1.0, record.reduction_ratio))
        stats.speeds.extend(s for s in in_flight_samples if s > 0)
        return stats

    @property
    def average_speed(self) -> float:
        return mean(self.speeds) if self.speeds else 0.0

    @property
    def average_reduction(self) -> float:
        return mean(self.reductions) if self.reductions else 1.0

    @property
    def average_duration(self) -> float:
        return mean(self.durations) if self.durations else 0.0

    @property
    def average_wall_time(self) -> float:
        return mean(self.wall_times) if self.wall_times else 0.0


def estimate(
    ledger: List[JobRecord],
    in_flight_samples: Iterable[float],
    total_pending_bytes: int,
    remaining_items: int = 0,
    session_completed: int = 0,
    elapsed: float = 0.0,
    parallelism: int = 1,
) -> Optional[Estimate]:
    """ETA and projected savings, or None until MIN_SAMPLES records exist.

    Both projections cover the session's items (completed this session plus
    remaining) spread over `parallelism` slots, minus the elapsed runtime.
    """
    stats = AggregateStats.from_ledger(ledger, in_flight_samples)
    if stats.record_count < MIN_SAMPLES:
        return None

    items = max(0, session_completed) + max(0, remaining_items)
    slots = max(1, parallelism)

    eta_by_throughput = max(0.0, stats.average_wall_time * items / slots - elapsed)
    if stats.average_speed > 0 and stats.average_duration > 0:
        per_item = stats.average_duration / stats.average_speed
        eta_by_duration = max(0.0, per_item * items / slots - elapsed)
    else:
        eta_by_duration = eta_by_throughput

    return Estimate(
        eta_by_duration=eta_by_duration,
        eta_by_throughput=eta_by_throughput,
        eta_blended=(eta_by_duration + eta_by_throughput) / 2,
        projected_savings=max(0.0, total_pending_bytes * (1.0 - stats.average_reduction)),
    )
