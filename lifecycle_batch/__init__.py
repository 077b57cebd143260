"""Background jobs for the lifecycle engine: SLA sweeps and outbound retries."""

from lifecycle_batch.scheduler import SweepScheduler

__all__ = ["SweepScheduler"]
