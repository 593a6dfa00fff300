import logging

from ..config import DATABASE_URL, SyncConfig
from ..services.sweep import sweep_expired_discounts
from ..storage.db import init_db, make_engine, make_session_factory

logger = logging.getLogger(__name__)

_session_factory = None


def _sessions():
    global _session_factory
    if _session_factory is None:
        engine = make_engine(DATABASE_URL)
        init_db(engine)
        _session_factory = make_session_factory(engine)
    return _session_factory


def job_sweep_expired_discounts(session_factory=None, config: SyncConfig | None = None):
    try:
        result = sweep_expired_discounts(session_factory or _sessions(), config or SyncConfig.from_env())
        logger.info("Expired discount sweep finished", extra={"deactivated": result.deactivated,
                                                             "errors": result.errors})
        return result
    except Exception:
        logger.exception("Expired discount sweep failed")
        raise
