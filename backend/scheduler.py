from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from config import EXPIRY_SWEEP_INTERVAL_MINUTES
from tasks.expiry_tasks import run_expiry_sweep

scheduler = BackgroundScheduler(timezone="UTC")

# Persist quotation expiry and release stock held by stale quotations
scheduler.add_job(
    run_expiry_sweep,
    IntervalTrigger(minutes=EXPIRY_SWEEP_INTERVAL_MINUTES),
    id='quotation_expiry_job',
    max_instances=1,
    coalesce=True
)
