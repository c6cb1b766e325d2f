"""
Conversation persistence: one row per completed recording session.

SQLAlchemy Core over any database URL (SQLite by default, Postgres in
production). Calls are blocking; the WebSocket gateway runs them in the
default executor.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, create_engine, insert, select
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

metadata = MetaData()

conversation_table = Table(
    "conversation",
    metadata,
    Column("id", String(128), primary_key=True),
    Column("transcript", Text, nullable=False),
    Column("duration", Integer, nullable=False),  # milliseconds
    Column("timestamp", DateTime(timezone=True), nullable=False),
)


def _row_to_dict(row: Row) -> Dict[str, Any]:
    data = dict(row._mapping)
    ts = data.get("timestamp")
    if isinstance(ts, datetime):
        data["timestamp"] = ts.isoformat()
    return data


class ConversationStore:
    """
    Args:
        database_url: SQLAlchemy URL, e.g. sqlite:///conversations.db.
        engine: Prebuilt engine (overrides database_url).
    """

    def __init__(self, database_url: str = "sqlite:///conversations.db", engine: Optional[Engine] = None):
        self.engine = engine or create_engine(database_url, future=True)
        metadata.create_all(self.engine)

    def save_conversation(self, session_id: str, transcript: str, duration_ms: int) -> Dict[str, Any]:
        """
        Insert one conversation in its own transaction.

        Returns:
            The stored record as a dict (timestamp as ISO string).

        Raises:
            SQLAlchemyError: on any database failure (transaction rolled back).
        """
        record = {
            "id": session_id,
            "transcript": transcript,
            "duration": int(duration_ms),
            "timestamp": datetime.now(timezone.utc),
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(conversation_table).values(**record))
        except SQLAlchemyError as e:
            logger.error("Error saving conversation %s: %s", session_id, e)
            raise
        logger.info("Saved conversation %s (%s chars, %sms)", session_id, len(transcript), duration_ms)
        record["timestamp"] = record["timestamp"].isoformat()
        return record

    def get_conversation(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(conversation_table).where(conversation_table.c.id == session_id)
            ).first()
        return _row_to_dict(row) if row is not None else None

    def list_conversations(self) -> List[Dict[str, Any]]:
        """All conversations, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(conversation_table).order_by(conversation_table.c.timestamp.desc())
            ).all()
        return [_row_to_dict(row) for row in rows]
