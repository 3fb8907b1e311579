"""
QA Tracking Dashboard
Blueprint helpers shared by every view module.
"""

import logging

from sqlalchemy.exc import IntegrityError, OperationalError

from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """``(obj, None)`` when found, ``(None, error_response)`` otherwise.

        req, err = get_or_404(Requirement, req_id)
        if err:
            return err
    """
    obj = db.session.get(model, pk)
    if obj is None:
        return None, api_error(E.NOT_FOUND, f"{label or model.__name__} id={pk} not found")
    return obj, None


def parse_int_list(values):
    """``["1,2", "3"]`` / ``"1,2"`` / ``5`` → ``[1, 2, 3]``.

    A non-numeric token raises ValueError; callers turn it into a 400.
    """
    if values is None:
        return []
    if isinstance(values, (str, int)):
        values = [values]
    return [
        int(token)
        for value in values
        for token in (t.strip() for t in str(value).split(","))
        if token
    ]


def db_commit_or_error(extra=None):
    """Commit the request's unit of work.

    Returns None on success. On failure the session is rolled back and an
    error response is returned: 409 for constraint violations, 500 for
    anything else. ``extra`` is merged into the body so a failed status
    change can still report ``previous_status``.
    """
    extra = extra or {}
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Commit rejected by constraint: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation", **extra)
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Commit failed: database unavailable")
        return api_error(E.DATABASE, f"Database error: {exc.orig}", **extra)
    except Exception as exc:
        db.session.rollback()
        logger.exception("Commit failed")
        return api_error(E.DATABASE, f"Database error: {exc}", **extra)
