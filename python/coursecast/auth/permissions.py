"""Authorization predicates for course and lesson access.

These predicates are the single source of truth for video access logic.
They are used by services to enforce access control consistently.

All functions:
- Accept an explicit SQLAlchemy Session
- Return booleans only (no HTTP exceptions)
- Return False for ids that do not exist

Rules:
- Manage (upload, replace, delete, subtitles): course owner or admin
- View (playback, subtitles, notify-when-ready): course owner, enrolled user, or admin
"""

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from coursecast.db.models import Course, Enrollment, Lesson, User, UserRole


def is_admin(session: Session, user_id: UUID) -> bool:
    """Check whether the user holds the admin role."""
    query = select(exists().where(User.id == user_id, User.role == UserRole.admin))
    return bool(session.execute(query).scalar())


def can_manage_course(session: Session, viewer_user_id: UUID, course_id: int) -> bool:
    """True iff the viewer owns the course or is an admin."""
    owner = exists().where(Course.id == course_id, Course.owner_user_id == viewer_user_id)
    admin = exists().where(User.id == viewer_user_id, User.role == UserRole.admin)
    return bool(session.execute(select(owner | admin)).scalar())


def can_view_course(session: Session, viewer_user_id: UUID, course_id: int) -> bool:
    """True iff the viewer owns, is enrolled in, or administers the course."""
    owner = exists().where(Course.id == course_id, Course.owner_user_id == viewer_user_id)
    enrolled = exists().where(
        Enrollment.course_id == course_id, Enrollment.user_id == viewer_user_id
    )
    admin = exists().where(User.id == viewer_user_id, User.role == UserRole.admin)
    return bool(session.execute(select(owner | enrolled | admin)).scalar())


def can_view_lesson(session: Session, viewer_user_id: UUID, lesson_id: int) -> bool:
    """Lesson visibility follows its course. Returns False for unknown lessons."""
    course_id = session.execute(
        select(Lesson.course_id).where(Lesson.id == lesson_id)
    ).scalar_one_or_none()
    if course_id is None:
        return False
    return can_view_course(session, viewer_user_id, course_id)
