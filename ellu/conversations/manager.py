"""
Conversation Manager

Server-side storage of chat sessions in a JSON file, with per-session token
and cost totals and JSON/CSV/PDF export.

Only the most recently updated sessions are kept (10 by default).

Usage:
    manager = get_conversation_manager()
    session = manager.create_session("de")
    manager.add_messages(session.id, Message.user("Wie setze ich einen Abnäher?"))
    pdf_bytes = manager.export_session(session.id, "pdf")
"""

import io
import csv
import json
import time
import logging
import threading
from pathlib import Path
from collections import Counter
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer

from ..handlers.error_handler import ValidationError

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv", "pdf")
CSV_HEADER = ["Timestamp", "Role", "Content", "Tokens", "Cost"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Message:
    """A single chat turn"""
    id: str
    role: str
    content: str
    timestamp: str = field(default_factory=_now)
    sources: Optional[List[Dict[str, Any]]] = None
    processing_time: Optional[int] = None
    token_usage: Optional[Dict[str, Any]] = None

    @classmethod
    def create(cls, role: str, content: str, **kwargs) -> "Message":
        return cls(id=f"msg_{time.time_ns()}", role=role, content=content, **kwargs)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls.create("user", content)

    @property
    def total_tokens(self) -> int:
        return (self.token_usage or {}).get("total_tokens", 0)

    @property
    def total_cost(self) -> float:
        return (self.token_usage or {}).get("cost", {}).get("total_cost", 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "sources": self.sources,
            "processing_time": self.processing_time,
            "token_usage": self.token_usage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data.get("id") or f"msg_{time.time_ns()}",
            role=data["role"],
            content=data["content"],
            timestamp=data.get("timestamp") or _now(),
            sources=data.get("sources"),
            processing_time=data.get("processing_time"),
            token_usage=data.get("token_usage"),
        )


@dataclass
class ConversationSession:
    id: str
    title: str
    created_at: str
    updated_at: str
    language: str = "en"
    message_count: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    messages: List[Message] = field(default_factory=list)

    def to_dict(self, include_messages: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "language": self.language,
            "message_count": self.message_count,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationSession":
        return cls(
            id=data["id"],
            title=data.get("title", "New Conversation"),
            created_at=data["created_at"],
            updated_at=data.get("updated_at", data["created_at"]),
            language=data.get("language", "en"),
            message_count=data.get("message_count", 0),
            total_tokens=data.get("total_tokens", 0),
            total_cost=data.get("total_cost", 0.0),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
        )


def generate_session_title(messages: List[Message]) -> str:
    """Title from the first substantial user message, else the conversation date"""
    if not messages:
        return "New Conversation"

    for message in messages:
        if message.role == "user" and len(message.content) > 10:
            text = message.content
            title = text[:40]
            last_space = title.rfind(" ")
            if last_space > 20:
                title = title[:last_space]
            return title + ("..." if len(text) > 40 else "")

    return f"Conversation {messages[0].timestamp[:10]}"


class ConversationManager:
    """JSON-file backed session store"""

    def __init__(self, storage_file: str = "./data/conversations/sessions.json", max_sessions: int = 10):
        self.storage_file = Path(storage_file)
        self.max_sessions = max_sessions
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _read(self) -> Dict[str, Any]:
        if not self.storage_file.exists():
            return {"sessions": [], "current_session_id": None}
        try:
            with open(self.storage_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt session file {self.storage_file}: {e}")
            return {"sessions": [], "current_session_id": None}

    def _write(self, data: Dict[str, Any]) -> None:
        self.storage_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.storage_file.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        tmp_path.replace(self.storage_file)

    def _load_sessions(self) -> List[ConversationSession]:
        return [ConversationSession.from_dict(s) for s in self._read().get("sessions", [])]

    def _save_sessions(self, sessions: List[ConversationSession]) -> None:
        data = self._read()
        kept = sorted(sessions, key=lambda s: s.updated_at, reverse=True)[:self.max_sessions]
        if len(kept) < len(sessions):
            logger.debug(f"Dropped {len(sessions) - len(kept)} old sessions")
        data["sessions"] = [s.to_dict() for s in kept]
        self._write(data)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_sessions(self) -> List[ConversationSession]:
        """All stored sessions, most recently updated first"""
        with self._lock:
            return sorted(self._load_sessions(), key=lambda s: s.updated_at, reverse=True)

    def get_session(self, session_id: str) -> Optional[ConversationSession]:
        with self._lock:
            return next((s for s in self._load_sessions() if s.id == session_id), None)

    def create_session(self, language: str = "en") -> ConversationSession:
        now = datetime.now(timezone.utc)
        stamp = int(now.timestamp() * 1000)
        with self._lock:
            sessions = self._load_sessions()
            existing = {s.id for s in sessions}
            while f"session_{stamp}" in existing:
                stamp += 1
            session = ConversationSession(
                id=f"session_{stamp}",
                title="New Conversation",
                created_at=now.isoformat(),
                updated_at=now.isoformat(),
                language=language,
            )
            sessions.append(session)
            self._save_sessions(sessions)
        logger.info(f"Created conversation session {session.id}")
        return session

    def update_session(self, session_id: str, messages: List[Message]) -> Optional[ConversationSession]:
        """Replace a session's messages and recompute its totals and title"""
        with self._lock:
            sessions = self._load_sessions()
            session = next((s for s in sessions if s.id == session_id), None)
            if session is None:
                return None

            assistant = [m for m in messages if m.role == "assistant" and m.token_usage]
            session.messages = list(messages)
            session.message_count = len(messages)
            session.total_tokens = sum(m.total_tokens for m in assistant)
            session.total_cost = round(sum(m.total_cost for m in assistant), 6)
            session.updated_at = _now()
            session.title = generate_session_title(messages)

            self._save_sessions(sessions)
            return session

    def add_messages(self, session_id: str, *messages: Message) -> Optional[ConversationSession]:
        with self._lock:
            session = self.get_session(session_id)
            if session is None:
                return None
            return self.update_session(session_id, session.messages + list(messages))

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            sessions = self._load_sessions()
            remaining = [s for s in sessions if s.id != session_id]
            if len(remaining) == len(sessions):
                return False
            self._save_sessions(remaining)
            if self.get_current_session_id() == session_id:
                self.set_current_session_id(None)
        logger.info(f"Deleted conversation session {session_id}")
        return True

    def get_current_session_id(self) -> Optional[str]:
        with self._lock:
            return self._read().get("current_session_id")

    def set_current_session_id(self, session_id: Optional[str]) -> None:
        with self._lock:
            data = self._read()
            data["current_session_id"] = session_id
            self._write(data)

    def clear_all_data(self) -> None:
        with self._lock:
            if self.storage_file.exists():
                self.storage_file.unlink()
        logger.info("Cleared all conversation data")

    # ------------------------------------------------------------------
    # Stats and export
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        sessions = self.get_sessions()
        if not sessions:
            return {
                "total_sessions": 0,
                "total_messages": 0,
                "total_tokens": 0,
                "total_cost": 0.0,
                "average_messages_per_session": 0,
                "most_active_day": "No data",
            }

        total_messages = sum(s.message_count for s in sessions)
        day_counts: Counter = Counter()
        for session in sessions:
            day_counts[session.created_at[:10]] += session.message_count

        return {
            "total_sessions": len(sessions),
            "total_messages": total_messages,
            "total_tokens": sum(s.total_tokens for s in sessions),
            "total_cost": round(sum(s.total_cost for s in sessions), 6),
            "average_messages_per_session": round(total_messages / len(sessions)),
            "most_active_day": day_counts.most_common(1)[0][0],
        }

    def export_session(self, session_id: str, export_format: str = "json") -> Optional[bytes]:
        """
        Render a session for download.

        Returns:
            Encoded file content, or None if the session does not exist

        Raises:
            ValidationError: Unknown export format
        """
        if export_format not in EXPORT_FORMATS:
            raise ValidationError(
                f"Unsupported export format: {export_format}. Use one of: {', '.join(EXPORT_FORMATS)}"
            )

        session = self.get_session(session_id)
        if session is None:
            return None

        if export_format == "json":
            return self._export_json(session)
        if export_format == "csv":
            return self._export_csv(session)
        return self._export_pdf(session)

    @staticmethod
    def _export_json(session: ConversationSession) -> bytes:
        data = {
            "session": {
                "id": session.id,
                "title": session.title,
                "created_at": session.created_at,
                "updated_at": session.updated_at,
                "language": session.language,
            },
            "stats": {
                "message_count": session.message_count,
                "total_tokens": session.total_tokens,
                "total_cost": session.total_cost,
            },
            "messages": [m.to_dict() for m in session.messages],
        }
        return json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")

    @staticmethod
    def _export_csv(session: ConversationSession) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADER)
        for m in session.messages:
            writer.writerow([m.timestamp, m.role, m.content, m.total_tokens, m.total_cost])
        return buffer.getvalue().encode("utf-8")

    @staticmethod
    def _export_pdf(session: ConversationSession) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=0.8 * inch,
            rightMargin=0.8 * inch,
            topMargin=0.8 * inch,
            bottomMargin=0.8 * inch,
            title=session.title,
            author="ELLU Studios",
        )

        styles = getSampleStyleSheet()
        body = styles["BodyText"]
        meta_style = ParagraphStyle("Meta", parent=body, fontSize=8, textColor=colors.grey)

        story = [
            Paragraph(escape(session.title), styles["Heading1"]),
            Paragraph(f"<b>Created:</b> {session.created_at[:19].replace('T', ' ')}", body),
            Paragraph(f"<b>Language:</b> {session.language}", body),
            Paragraph(f"<b>Messages:</b> {session.message_count}", body),
            Paragraph(
                f"<b>Tokens:</b> {session.total_tokens} &nbsp; <b>Cost:</b> ${session.total_cost:.5f}",
                body
            ),
            Spacer(1, 0.25 * inch),
        ]

        for m in session.messages:
            speaker = "Student" if m.role == "user" else "Assistant"
            story.append(Paragraph(f"<b>{speaker}</b>", styles["Heading3"]))
            for para in m.content.split("\n\n"):
                if para.strip():
                    story.append(Paragraph(escape(para.strip()).replace("\n", "<br/>"), body))
            details = m.timestamp[:19].replace("T", " ")
            if m.token_usage:
                details += f" | {m.total_tokens} tokens | ${m.total_cost:.5f}"
            story.append(Paragraph(details, meta_style))
            story.append(Spacer(1, 0.12 * inch))

        doc.build(story)
        return buffer.getvalue()


# Singleton
_conversation_manager: Optional[ConversationManager] = None


def get_conversation_manager() -> ConversationManager:
    """Get singleton conversation manager using the configured storage file"""
    global _conversation_manager
    if _conversation_manager is None:
        from config import settings
        _conversation_manager = ConversationManager(
            storage_file=settings.conversations.storage_file,
            max_sessions=settings.conversations.max_sessions,
        )
    return _conversation_manager
