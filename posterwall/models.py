import datetime
from typing import Dict, List

from sqlalchemy import DateTime, Integer, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from . import config

logger = config.logger


def _utcnow() -> datetime.datetime:
    """Return a timezone-aware UTC timestamp for SQLAlchemy defaults."""
    return datetime.datetime.now(datetime.timezone.utc)


def _database_url() -> str:
    return f"sqlite:///{config.DATABASE_PATH}"


engine = create_engine(_database_url(), connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False)
SessionLocal.configure(bind=engine)


class Base(DeclarativeBase):
    pass


class LogEntry(Base):
    __tablename__ = "logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime, default=_utcnow)
    context: Mapped[str] = mapped_column(String)
    info: Mapped[str] = mapped_column(String)

    def __repr__(self) -> str:
        return f"<LogEntry(timestamp={self.timestamp}, context={self.context}, info={self.info})>"


class ConfigEntry(Base):
    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    value: Mapped[str] = mapped_column(String)

    def __repr__(self) -> str:
        return f"<ConfigEntry(key={self.key}, value={self.value})>"


class DisplayEvent(Base):
    __tablename__ = "display_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    displayed_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=_utcnow)
    item_key: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String, default="")
    item_type: Mapped[str] = mapped_column(String, default="")
    mode: Mapped[str] = mapped_column(String, default="idle")

    def __repr__(self) -> str:
        return f"<DisplayEvent(item_key={self.item_key}, title={self.title}, mode={self.mode})>"


def reconfigure_engine() -> None:
    """Recreate the SQLite engine to follow the current config path."""
    global engine
    new_engine = create_engine(_database_url(), connect_args={"check_same_thread": False})
    if engine:
        engine.dispose()
    engine = new_engine
    SessionLocal.configure(bind=engine)


def init_db() -> None:
    """Initialize the database by creating all tables."""
    reconfigure_engine()
    Base.metadata.create_all(bind=engine)


def add_log_entry(context: str, info: str) -> LogEntry:
    """Add a new log entry."""
    with SessionLocal() as db:
        log = LogEntry(context=context, info=info)
        db.add(log)
        db.commit()
        db.refresh(log)
        return log


def get_logs(limit: int = 20) -> List[LogEntry]:
    """Get the latest log entries ordered oldest-to-newest."""
    with SessionLocal() as db:
        query = select(LogEntry).order_by(LogEntry.timestamp.desc()).limit(limit)
        result = db.execute(query)
        logs = list(result.scalars().all())
        return sorted(logs, key=lambda entry: entry.timestamp)


def record_display(item_key: str, title: str, item_type: str, mode: str) -> DisplayEvent:
    """Append a committed poster display to the history table."""
    with SessionLocal() as db:
        event = DisplayEvent(item_key=item_key, title=title, item_type=item_type, mode=mode)
        db.add(event)
        db.commit()
        db.refresh(event)
        return event


def get_display_history(limit: int = 50) -> List[Dict[str, str]]:
    """Return the most recent displays, newest first."""
    with SessionLocal() as db:
        query = select(DisplayEvent).order_by(DisplayEvent.id.desc()).limit(limit)
        rows = db.execute(query).scalars().all()
        return [
            {
                'item_key': row.item_key,
                'title': row.title,
                'type': row.item_type,
                'mode': row.mode,
                'displayed_at': row.displayed_at.replace(microsecond=0).isoformat()
            }
            for row in rows
        ]


def save_config_entry(key: str, value: str) -> None:
    """Persist a configuration key/value pair for future restarts."""
    with SessionLocal() as db:
        entry = db.get(ConfigEntry, key)
        if entry is None:
            entry = ConfigEntry(key=key, value=str(value))
            db.add(entry)
        else:
            entry.value = str(value)
        db.commit()


def load_config_entries() -> Dict[str, str]:
    """Return all persisted configuration entries as a key/value mapping."""
    with SessionLocal() as db:
        stmt = select(ConfigEntry)
        rows = db.execute(stmt).scalars().all()
        return {row.key: row.value for row in rows}
