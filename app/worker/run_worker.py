"""Run ARQ worker. Usage: python -m app.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from app.worker.tasks import get_redis_settings, reconcile_generations, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [reconcile_generations]
    cron_jobs = [
        cron(reconcile_generations, second=0),  # every minute at :00
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
