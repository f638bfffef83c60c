from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from supply_portal.errors import PersistenceFailure, StaleOrder

logger = logging.getLogger(__name__)


def flush_unit(db: Session, *, operation: str) -> None:
    """Flush pending writes, rolling the whole session back on failure."""
    try:
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        logger.info('Concurrent update rejected during %s: %s', operation, exc)
        raise StaleOrder('Order was modified by someone else; reload and try again') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('Store write failed during %s: %s', operation, exc)
        raise PersistenceFailure(f'Could not save changes ({operation})', operation=operation) from exc


def commit_unit(db: Session, *, operation: str) -> None:
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.info('Concurrent update rejected on commit of %s: %s', operation, exc)
        raise StaleOrder('Order was modified by someone else; reload and try again') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('Commit failed for %s: %s', operation, exc)
        raise PersistenceFailure(f'Could not save changes ({operation})', operation=operation) from exc
