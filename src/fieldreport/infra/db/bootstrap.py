from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import create_engine

from src.fieldreport.config import settings
from src.fieldreport.infra.db import inmemory as inmemory_repos
from src.fieldreport.infra.db.models import Base
from src.fieldreport.infra.db.session import create_sqlalchemy_session_factory
from src.fieldreport.infra.db.sql_reports import SqlReportRepository

logger = logging.getLogger(__name__)


def init_sql_repositories(database_url: Optional[str] = None) -> bool:
    """Optionally switch the in-memory report index to the SQL-backed one.

    Called from the application startup hook. If USE_SQL_REPOS is not enabled
    or DATABASE_URL is not configured, this is a no-op and the in-memory
    repository remains active. Returns whether the swap happened.
    """

    if not settings.use_sql_repos and database_url is None:
        return False

    db_url = database_url or settings.database_url
    if not db_url:
        logger.warning("USE_SQL_REPOS is enabled but DATABASE_URL is not set; keeping in-memory report index")
        return False

    engine = create_engine(db_url, future=True)

    # Create tables if they do not exist. Real deployments should manage the
    # schema with migrations.
    Base.metadata.create_all(engine)

    inmemory_repos.report_repository = SqlReportRepository(create_sqlalchemy_session_factory(engine=engine))
    logger.info("Report index switched to SQL repository")
    return True
