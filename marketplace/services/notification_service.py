from datetime import datetime
from typing import Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ..db.session import get_session
from ..errors import NotFoundError
from ..models.notification import Notification
from ..models.user import User
from ..utils.dto import to_notification_dto
from .logging import log_event


class EmailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class LogEmailSender:
    """Default transport: records the message in the event log."""

    def send(self, to: str, subject: str, body: str) -> None:
        log_event("info", "email.queued", to=to, subject=subject)


class NotificationService:
    """In-app notifications with optional e-mail fan-out.

    ``notify`` is fire-and-forget: a storage or transport failure is logged and
    never propagates into the order workflow.
    """

    def __init__(self, session_factory=get_session, email_sender: Optional[EmailSender] = None):
        self._session_factory = session_factory
        self._email = email_sender or LogEmailSender()

    def notify(
        self,
        user_id: Optional[str],
        message: str,
        type: str = "general",
        related_id: Optional[str] = None,
        related_model: Optional[str] = "Order",
        send_email: bool = False,
        email: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Optional[str]:
        notification_id = None
        if user_id:
            try:
                with self._session_factory() as session:
                    user = session.get(User, user_id)
                    if user is not None:
                        email = email or user.email
                        row = Notification(
                            user_id=user_id,
                            message=message,
                            type=type,
                            related_id=related_id,
                            related_model=related_model,
                        )
                        session.add(row)
                        session.flush()
                        notification_id = row.id
            except SQLAlchemyError:
                log_event("error", "notification.store_failed", exc_info=True, user_id=user_id, type=type, related_id=related_id)
        if send_email and email:
            try:
                self._email.send(email, subject or message, message)
            except Exception:
                log_event("error", "notification.email_failed", exc_info=True, to=email, type=type, related_id=related_id)
        log_event("info", "notification.sent", user_id=user_id, type=type, related_id=related_id, email=bool(send_email and email))
        return notification_id

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                q = q.filter(Notification.is_read.is_(False))
            rows = q.order_by(Notification.created_at.desc()).limit(limit).all()
            return [to_notification_dto(r) for r in rows]

    def mark_as_read(self, notification_id: str, user_id: str) -> Dict:
        with self._session_factory() as session:
            row = (
                session.query(Notification)
                .filter(Notification.id == notification_id, Notification.user_id == user_id)
                .first()
            )
            if row is None:
                raise NotFoundError("Notification", notification_id)
            if not row.is_read:
                row.is_read = True
                row.read_at = datetime.utcnow()
            return to_notification_dto(row)

    def mark_all_as_read(self, user_id: str) -> int:
        with self._session_factory() as session:
            count = (
                session.query(Notification)
                .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
                .update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
            )
            return int(count)
