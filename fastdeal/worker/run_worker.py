"""Run ARQ worker. Usage: python -m fastdeal.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from fastdeal.worker.tasks import get_redis_settings, shutdown, startup, sweep_expired_payments, sweep_minutes


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [sweep_expired_payments]
    cron_jobs = [
        cron(sweep_expired_payments, minute=sweep_minutes(), second=0, run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
