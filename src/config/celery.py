"""
Celery configuration for the ERP data layer.

DJANGO_SETTINGS_MODULE is set before the app is instantiated so Celery
reads the Django settings (``CELERY_`` prefix). Once the app is finalized,
one periodic cache sweep is scheduled per entity registered with the
sweep registry.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("erp")

# Read Django settings with the CELERY_ prefix
app.config_from_object("django.conf:settings", namespace="CELERY")

# Discover tasks.py in every installed app
app.autodiscover_tasks()


@app.on_after_finalize.connect
def setup_cache_sweeps(sender, **kwargs):
    from modules.core.sweep import sweep_registry
    from modules.core.tasks import sweep_entity_caches

    for entry in sweep_registry.entries():
        sender.add_periodic_task(
            entry.interval_seconds,
            sweep_entity_caches.s(entry.entity),
            name=f"sweep-{entry.entity}-caches",
        )
