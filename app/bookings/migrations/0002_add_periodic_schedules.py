"""
Add celery-beat schedules for the booking sweeps.

- process_webhook_retries: every 5 minutes
- evaluate_capture_rules: every 15 minutes
- release_expired_leases: every 10 minutes
"""

from django.db import migrations

PERIODIC_TASKS = [
    (
        "Process Webhook Retries",
        "bookings.workers.retry_worker.process_webhook_retries",
        5,
        "Replays failed webhook deliveries and capture attempts with exponential backoff.",
    ),
    (
        "Evaluate Capture Rules",
        "bookings.workers.capture_evaluator.evaluate_capture_rules",
        15,
        "Captures authorized bookings whose active capture rules are met.",
    ),
    (
        "Release Expired Leases",
        "bookings.workers.retry_worker.release_expired_leases",
        10,
        "Returns retry rows and capture leases abandoned by crashed sweeps.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, minutes, description in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=minutes,
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[name for name, *_ in PERIODIC_TASKS]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("bookings", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
