from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from growthcrm.automation.service import reconcile_open_incidents
from growthcrm.core.celery_app import celery_app
from growthcrm.core.database import SessionLocal


logger = logging.getLogger("growthcrm.automation")


@celery_app.task(name="growthcrm.automation.reconcile_cascades")
def reconcile_cascades_task() -> dict[str, Any]:
    session = SessionLocal()
    try:
        summary = reconcile_open_incidents(session)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("cascade.reconcile_failed")
        raise
    finally:
        session.close()
    logger.info("cascade.reconciled", extra={"status": f"{summary['resolved']}/{summary['checked']}"})
    return summary
