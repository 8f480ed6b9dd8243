import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .db import NullifierRecord, SessionLocal
from .models import ReserveResult

logger = logging.getLogger(__name__)


class NullifierRegistry:
    """Durable set of consumed nullifiers, keyed by (poll_id, nullifier_hash).

    ``reserve`` is an atomic check-and-insert. Inside one process a lock
    serialises callers; across processes the unique index on
    ``(poll_id, nullifier_hash)`` decides the winner. There is no
    way to remove a record.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory
        self._lock = threading.Lock()

    def reserve(
        self,
        poll_id: int,
        nullifier_hash: int,
        *,
        commitment: Optional[int] = None,
        proof_root: Optional[str] = None,
        on_reserved: Optional[Callable[[Session], None]] = None,
    ) -> ReserveResult:
        """Consume ``nullifier_hash`` for ``poll_id``.

        ``on_reserved`` runs inside the reserving transaction, so anything it
        adds to the session is committed together with the record or not at
        all.
        """
        values = dict(
            poll_id=poll_id,
            nullifier_hash=str(nullifier_hash),
            commitment=None if commitment is None else str(commitment),
            proof_root=proof_root,
            consumed_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            db = self._session_factory()
            try:
                if db.bind.dialect.name == "postgresql":
                    # Native ON CONFLICT for atomicity across processes
                    stmt = pg_insert(NullifierRecord).values(**values).on_conflict_do_nothing(
                        index_elements=["poll_id", "nullifier_hash"]
                    )
                    if db.execute(stmt).rowcount == 0:
                        db.rollback()
                        return self._already_used(poll_id)
                else:
                    db.add(NullifierRecord(**values))
                    db.flush()
                if on_reserved is not None:
                    on_reserved(db)
                db.commit()
            except IntegrityError:
                db.rollback()
                return self._already_used(poll_id)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
        logger.info("nullifier reserved", extra={"poll_id": poll_id})
        return ReserveResult.OK

    def _already_used(self, poll_id: int) -> ReserveResult:
        logger.warning("nullifier already used", extra={"poll_id": poll_id})
        return ReserveResult.ALREADY_USED

    def get(self, poll_id: int, nullifier_hash: int) -> Optional[NullifierRecord]:
        db = self._session_factory()
        try:
            row = (
                db.query(NullifierRecord)
                .filter_by(poll_id=poll_id, nullifier_hash=str(nullifier_hash))
                .first()
            )
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    def is_reserved(self, poll_id: int, nullifier_hash: int) -> bool:
        return self.get(poll_id, nullifier_hash) is not None

    def count(self, poll_id: int) -> int:
        db = self._session_factory()
        try:
            return db.query(NullifierRecord).filter_by(poll_id=poll_id).count()
        finally:
            db.close()
