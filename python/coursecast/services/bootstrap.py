"""User bootstrap service.

Provides race-safe user row creation on first authenticated request.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from coursecast.db.models import User, UserRole, utcnow
from coursecast.db.session import transaction
from coursecast.logging import get_logger

logger = get_logger(__name__)


def _insert_ignore_conflict(db: Session):
    dialect = db.get_bind().dialect.name
    insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
    return insert(User)


def ensure_user(db: Session, user_id: UUID) -> UserRole:
    """Ensure a users row exists for the subject and return its role.

    Race-safe and idempotent: concurrent first requests converge through
    INSERT ... ON CONFLICT DO NOTHING. New users start as students; roles
    are managed outside this subsystem.

    Args:
        db: Database session.
        user_id: The user's ID (from JWT sub claim).

    Returns:
        The user's stored role.
    """
    with transaction(db):
        stmt = (
            _insert_ignore_conflict(db)
            .values(id=user_id, role=UserRole.student, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=["id"])
        )
        result = db.execute(stmt)
        if result.rowcount:
            logger.info("user_bootstrapped", user_id=str(user_id))

        role = db.execute(select(User.role).where(User.id == user_id)).scalar_one()

    return role
