"""Asynchronous tasks of the core module."""

import structlog
from celery import shared_task

from modules.core.sweep import sweep_registry

logger = structlog.get_logger(__name__)


@shared_task(name="core.sweep_entity_caches")
def sweep_entity_caches(entity):
    """Fully invalidate every named cache of one entity type."""
    report = sweep_registry.sweep(entity)
    if not report.ok:
        logger.warning("sweep_entity_caches.partial", entity=entity, failed=sorted(report.failed))
    return report.as_dict()


@shared_task(name="core.sweep_all_caches")
def sweep_all_caches():
    """Sweep every registered entity; used on demand, not by the beat schedule."""
    reports = sweep_registry.sweep_all()
    logger.info("sweep_all_caches.executed", entities=len(reports))
    return [report.as_dict() for report in reports]
