# vmportal/tasks/jobs.py
import logging

from vmportal.config import settings
from vmportal.db import SessionLocal
from vmportal.hypervisor.runner import get_runner
from vmportal.reconciler import StateReconciler
from vmportal.tasks.celery_app import celery

logger = logging.getLogger(__name__)


# ============================
# PERIODIC / MAINTENANCE TASKS
# ============================

@celery.task(name="vmportal.tasks.jobs.sync_vm_states_job")
def sync_vm_states_job():
    db = SessionLocal()
    try:
        changed = StateReconciler(db, get_runner()).sync_states()
        if changed:
            logger.info("State sync updated %d VMs", changed)
        return {"status": "success", "changed": changed}
    except Exception as e:
        logger.exception("sync_vm_states_job failed")
        return {"status": "error", "error": str(e)}
    finally:
        db.close()


@celery.task(name="vmportal.tasks.jobs.cleanup_unused_disks_job")
def cleanup_unused_disks_job():
    db = SessionLocal()
    try:
        removed = StateReconciler(db, get_runner()).cleanup_unused_disks()
        return {"status": "success", "removed": removed}
    except Exception as e:
        logger.exception("cleanup_unused_disks_job failed")
        return {"status": "error", "error": str(e)}
    finally:
        db.close()


celery.conf.beat_schedule = {
    "sync-vm-states": {
        "task": "vmportal.tasks.jobs.sync_vm_states_job",
        "schedule": settings.sync_interval_seconds,
    },
    "cleanup-unused-disks": {
        "task": "vmportal.tasks.jobs.cleanup_unused_disks_job",
        "schedule": settings.cleanup_interval_seconds,
    },
}
