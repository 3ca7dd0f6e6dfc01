import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tutordesk.config import settings
from tutordesk.core.booking_result import InfraError
from tutordesk.request_context import current_endpoint


_connect_args = {'check_same_thread': False} if settings.database_url.startswith('sqlite') else {}
engine = create_engine(settings.database_url, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

T = TypeVar('T')

_SLOW_QUERY_MS = settings.db_slow_query_ms
_slow_logger = logging.getLogger('tutordesk.db.slow_query')
logger = logging.getLogger(__name__)


@event.listens_for(engine, 'before_cursor_execute')
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.perf_counter()


@event.listens_for(engine, 'after_cursor_execute')
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start = getattr(context, '_query_start_time', None)
    if start is None:
        return
    duration_ms = (time.perf_counter() - start) * 1000.0
    if duration_ms >= _SLOW_QUERY_MS:
        sql_text = (statement or '').replace('\n', ' ').strip()
        _slow_logger.warning(
            'slow_query duration_ms=%.2f endpoint=%s sql=%s',
            duration_ms,
            current_endpoint.get(),
            sql_text,
        )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_in_transaction(
    db: Session,
    work: Callable[[Session], T],
    *,
    label: str,
    attempts: int | None = None,
    on_integrity_error: Callable[[IntegrityError], Exception] | None = None,
) -> T:
    """Run `work` and commit, retrying on lock/serialization failures.

    `work` must do all of its reads (including validation) itself so that a
    retry re-validates against fresh state. Any exception rolls back.
    """
    max_attempts = max(1, int(attempts or settings.transaction_retry_attempts))
    for attempt in range(1, max_attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except IntegrityError as exc:
            db.rollback()
            if on_integrity_error is not None:
                raise on_integrity_error(exc) from exc
            logger.exception('transaction_integrity_error label=%s', label)
            raise InfraError(f'{label} failed: integrity error') from exc
        except OperationalError as exc:
            db.rollback()
            logger.warning('transaction_retry label=%s attempt=%s error=%s', label, attempt, exc.orig)
            if attempt == max_attempts:
                logger.exception('transaction_exhausted label=%s attempts=%s', label, max_attempts)
                raise InfraError(f'{label} failed after {max_attempts} attempts') from exc
        except Exception:
            db.rollback()
            raise
    raise InfraError(f'{label} failed')
