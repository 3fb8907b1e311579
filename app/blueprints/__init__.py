"""
QA Tracking Dashboard
Request parsing shared by the blueprints.
"""

from flask import request

DEFAULT_PAGE_SIZE = 200
MAX_PAGE_SIZE = 1000


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def paginate_list(items, default_limit=DEFAULT_PAGE_SIZE, max_limit=MAX_PAGE_SIZE):
    """Slice an already filtered and sorted list by ``?limit=&offset=``.

    Returns ``(page, total)``. Filtering happens in Python (cycle status is
    part of the predicate), so the page is cut after the fact.
    """
    limit = max(min(_int_arg("limit", default_limit), max_limit), 0)
    offset = max(_int_arg("offset", 0), 0)
    return items[offset:offset + limit], len(items)


def json_body() -> dict:
    """The JSON object body, or ``{}`` for a missing / non-object body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
