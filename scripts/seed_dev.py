#!/usr/bin/env python
"""Seed development database with a course to record into.

Creates a teacher, an enrolled student, course 7 and lesson 42 so the
upload and playback endpoints can be exercised locally with tokens for
the two fixed user ids below.

Constraints:
- Refuses to run in staging or prod (COURSECAST_ENV check)
- Idempotent via ON CONFLICT DO NOTHING
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/seed_dev.py
"""

import os
import sys

TEACHER_ID = "11111111-1111-4111-8111-111111111111"
STUDENT_ID = "22222222-2222-4222-8222-222222222222"
COURSE_ID = 7
LESSON_ID = 42


def main():
    # 1. Environment check (hard fail in staging/prod)
    env = os.getenv("COURSECAST_ENV", "local")
    if env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in COURSECAST_ENV={env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from sqlalchemy import create_engine, text

    engine = create_engine(database_url)
    created = {}

    with engine.connect() as conn:
        # 3. Idempotent seeding
        for label, user_id, role in (
            ("teacher", TEACHER_ID, "teacher"),
            ("student", STUDENT_ID, "student"),
        ):
            result = conn.execute(
                text("""
                    INSERT INTO users (id, role, created_at)
                    VALUES (:id, :role, now())
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                """),
                {"id": user_id, "role": role},
            )
            created[f"{label} {user_id}"] = result.fetchone() is not None

        result = conn.execute(
            text("""
                INSERT INTO courses (id, owner_user_id, title, created_at)
                VALUES (:id, :owner, 'Intro to Algorithms', now())
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {"id": COURSE_ID, "owner": TEACHER_ID},
        )
        created[f"course {COURSE_ID}"] = result.fetchone() is not None

        result = conn.execute(
            text("""
                INSERT INTO enrollments (course_id, user_id, created_at)
                VALUES (:course_id, :user_id, now())
                ON CONFLICT (course_id, user_id) DO NOTHING
                RETURNING id
            """),
            {"course_id": COURSE_ID, "user_id": STUDENT_ID},
        )
        created["enrollment"] = result.fetchone() is not None

        result = conn.execute(
            text("""
                INSERT INTO lessons (id, course_id, title, order_index, created_at, updated_at)
                VALUES (:id, :course_id, 'Lesson 1', 0, now(), now())
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {"id": LESSON_ID, "course_id": COURSE_ID},
        )
        created[f"lesson {LESSON_ID}"] = result.fetchone() is not None

        # Explicit ids leave the serial sequences behind.
        for table in ("courses", "lessons"):
            conn.execute(
                text(
                    f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
                    f"(SELECT max(id) FROM {table}))"
                )
            )

        conn.commit()

    # 4. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"COURSECAST_ENV: {env}")
    print()
    for name, was_created in created.items():
        print(f"{'✓ Created' if was_created else '• Exists'}: {name}")


if __name__ == "__main__":
    main()
