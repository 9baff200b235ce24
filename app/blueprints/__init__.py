"""
Construction Collaboration Platform
HTTP blueprints: ``health_bp`` (probes) and ``workflow_bp`` (lifecycle API).
"""

from flask import request


def _int_arg(name, default, *, lo=0, hi=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default
    value = max(value, lo)
    return min(value, hi) if hi is not None else value


def paginate_query(query, default_limit=50, max_limit=200):
    """Slice *query* by ``?limit=&offset=``; returns ``(items, total)``."""
    limit = _int_arg("limit", default_limit, lo=1, hi=max_limit)
    offset = _int_arg("offset", 0)
    return query.limit(limit).offset(offset).all(), query.order_by(None).count()
