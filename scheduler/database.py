import logging
import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from scheduler.core.errors import InternalError


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL and DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

# Columns added after the first deployment; older databases are backfilled on startup.
COLUMN_BACKFILLS = {
    'users': [
        ('name', 'ALTER TABLE users ADD COLUMN name VARCHAR'),
        ('grade_id', 'ALTER TABLE users ADD COLUMN grade_id INTEGER'),
    ],
    'live_sessions': [
        ('link_added_at', 'ALTER TABLE live_sessions ADD COLUMN link_added_at TIMESTAMP'),
        ('materials', 'ALTER TABLE live_sessions ADD COLUMN materials TEXT'),
        ('notes', 'ALTER TABLE live_sessions ADD COLUMN notes TEXT'),
    ],
    'session_bookings': [
        ('feedback_given_at', 'ALTER TABLE session_bookings ADD COLUMN feedback_given_at TIMESTAMP'),
    ],
}

INDEX_STATEMENTS = {
    'live_sessions': [
        'CREATE INDEX IF NOT EXISTS idx_live_sessions_track_date ON live_sessions(track_id, date)',
    ],
    'instructor_availabilities': [
        'CREATE INDEX IF NOT EXISTS idx_availability_track_confirmed '
        'ON instructor_availabilities(track_id, is_confirmed, week_start_date)',
    ],
    'session_attendances': [
        'CREATE INDEX IF NOT EXISTS idx_attendance_session_status ON session_attendances(session_id, status)',
    ],
}


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())

        with engine.begin() as connection:
            for table_name, migration_steps in COLUMN_BACKFILLS.items():
                if table_name not in table_names:
                    continue
                existing_columns = {column['name'] for column in inspector.get_columns(table_name)}
                for column_name, statement in migration_steps:
                    if column_name not in existing_columns:
                        logger.info('Adding missing column %s.%s', table_name, column_name)
                        connection.execute(text(statement))

            for table_name, statements in INDEX_STATEMENTS.items():
                if table_name not in table_names:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _scheduling_schema_checked = True


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        logger.exception('Scheduling schema check failed.')
        raise InternalError() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
