"""
=====================================================
BACKGROUND JOBS & SCHEDULER
=====================================================
Only started when SCHEDULER_ENABLED=1. The cron endpoints run the same
jobs for deployments that prefer an external trigger.
"""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app

from digimarket.jobs.delayed_delivery import process_delayed_deliveries
from digimarket.jobs.email_dispatcher import dispatch_emails
from digimarket.jobs.reconciliation import run_reconciliation
from digimarket.jobs.wallet_reconciler import audit_wallet_ledgers
from digimarket.payments.binance import client_from_config
from digimarket.utils.platform import load_platform_config


# =====================================================
# SCHEDULER
# =====================================================

scheduler = BackgroundScheduler(job_defaults={"coalesce": True, "max_instances": 1})


def _in_app(app, fn):
    def run():
        with app.app_context():
            try:
                return fn()
            except Exception:
                app.logger.exception("scheduled job %s failed", fn.__name__)
                return None

    run.__name__ = fn.__name__
    return run


# =====================================================
# JOBS
# =====================================================

def reconcile_crypto_payments():
    return run_reconciliation(
        config=load_platform_config(),
        client=client_from_config(current_app.config),
    )


def sweep_delayed_deliveries():
    return process_delayed_deliveries()


# =====================================================
# STARTER
# =====================================================

def start_scheduler(app) -> BackgroundScheduler:
    if scheduler.running:
        return scheduler

    scheduler.add_job(_in_app(app, reconcile_crypto_payments), "interval", minutes=2, id="reconcile")
    scheduler.add_job(_in_app(app, sweep_delayed_deliveries), "interval", minutes=5, id="delayed_delivery")
    scheduler.add_job(_in_app(app, dispatch_emails), "interval", minutes=1, id="email_dispatch")
    scheduler.add_job(_in_app(app, audit_wallet_ledgers), "interval", hours=1, id="wallet_audit")

    scheduler.start()
    app.logger.info("background scheduler started with %s jobs", len(scheduler.get_jobs()))
    return scheduler
