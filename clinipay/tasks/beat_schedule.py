# clinipay/tasks/beat_schedule.py
"""
Celery Beat schedule for clinipay.
"""

from celery.schedules import crontab

CELERYBEAT_SCHEDULE = {
    # Release doctor payouts whose hold has elapsed - top of every hour
    "process-due-payouts": {
        "task": "clinipay.tasks.payout_tasks.process_due_payouts",
        "schedule": crontab(minute=0),
        "options": {"queue": "payments", "priority": 8},
    },
}
