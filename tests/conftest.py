import pytest
from datetime import datetime, timedelta

from listing_alerts.scheduler import create_scheduler
from listing_alerts.storage import MemoryStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    # A Monday morning, inside the default 8-12 preferred window
    return FakeClock(datetime(2024, 6, 3, 10, 0, 0))


@pytest.fixture
def kv_store():
    return MemoryStore()


@pytest.fixture
def scheduler():
    # Not started: jobs stay pending until a test fires them
    sched = create_scheduler()
    yield sched
    if sched.running:
        sched.shutdown(wait=False)


@pytest.fixture
def fire_job():
    """Run a pending job by id, the way the scheduler would when it is due."""
    def _fire(sched, job_id):
        job = sched.get_job(job_id)
        assert job is not None, f"no pending job {job_id}"
        sched.remove_job(job_id)
        job.func(*job.args, **job.kwargs)
    return _fire


@pytest.fixture
def pending_ids():
    def _pending(sched, prefix=""):
        return [job.id for job in sched.get_jobs() if job.id.startswith(prefix)]
    return _pending
