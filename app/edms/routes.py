from flask import Blueprint, current_app
from sqlalchemy import inspect as sa_inspect, text

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/health/db")
def health_db():
    """Database reachability plus any mapped tables missing from the schema."""
    from app.edms.models import Base

    engine = current_app.extensions["sqlalchemy_engine"]
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        insp = sa_inspect(engine)
        missing = [name for name in sorted(Base.metadata.tables) if not insp.has_table(name)]
    except Exception as e:
        current_app.logger.exception("DB health check failed: %s", e)
        return {"ok": False, "error": "database unreachable"}, 503
    if missing:
        return {"ok": False, "missing_tables": missing}, 503
    return {"ok": True}
