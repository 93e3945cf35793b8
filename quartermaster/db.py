"""
Transaction helpers.

Every mutating operation runs inside ``serializable()``:

    with serializable():
        lots = StockLot.objects.select_for_update().filter(...)
        ...

On PostgreSQL the outermost block switches the transaction to SERIALIZABLE
isolation. Other backends rely on ``select_for_update`` row locks (SQLite
serializes writers anyway). A serialization failure or deadlock raised by the
database surfaces as ``Conflict('SERIALIZATION_FAILURE')``; nothing is retried
here, retrying is the caller's decision.
"""

import logging
from contextlib import contextmanager

from django.db import DEFAULT_DB_ALIAS, OperationalError, connections, transaction

from quartermaster.exceptions import Conflict

logger = logging.getLogger('quartermaster')

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({'40001', '40P01'})


def is_serialization_failure(exc: BaseException) -> bool:
    """True when a database error is a retryable serialization conflict."""
    cause = exc.__cause__ or exc
    sqlstate = getattr(cause, 'sqlstate', None) or getattr(cause, 'pgcode', None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    # SQLite reports lock contention as OperationalError("database is locked")
    return 'database is locked' in str(exc)


@contextmanager
def serializable(using: str = DEFAULT_DB_ALIAS):
    """Atomic block with SERIALIZABLE isolation; conflicts raise Conflict."""
    connection = connections[using]
    outermost = not connection.in_atomic_block
    try:
        with transaction.atomic(using=using):
            if outermost and connection.vendor == 'postgresql':
                with connection.cursor() as cursor:
                    cursor.execute('SET TRANSACTION ISOLATION LEVEL SERIALIZABLE')
            yield connection
    except OperationalError as exc:
        if not is_serialization_failure(exc):
            raise
        logger.warning("db.serialization_failure", extra={"error": str(exc)})
        raise Conflict('SERIALIZATION_FAILURE', detail=str(exc)) from exc
