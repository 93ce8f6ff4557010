import logging
from typing import Any, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from integrations import UpstreamUnavailable, post_json
from models import User

logger = logging.getLogger(__name__)


class PushSender(Protocol):
    def send(self, message: dict[str, Any]) -> None: ...


class PushClient:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def send(self, message: dict[str, Any]) -> None:
        post_json(
            self.settings.push_endpoint,
            message,
            timeout=self.settings.http_timeout_secs,
            headers={"Accept-Encoding": "gzip, deflate"},
        )


class NotificationDispatcher:
    """Best-effort push delivery: at most one attempt, errors are logged and
    never raised to the caller."""

    def __init__(self, session: Session, client: Optional[PushSender] = None) -> None:
        self.session = session
        self.client = client or PushClient()

    def send(
        self,
        owner_id: str,
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        try:
            user = self.session.get(User, owner_id)
        except SQLAlchemyError as exc:
            logger.error(f"push: token lookup failed for user={owner_id}: {exc}")
            return False
        if not user or not user.push_token:
            logger.info(f"push: no push token for user={owner_id}, skipping")
            return False

        message = {
            "to": user.push_token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": data or {},
        }
        try:
            self.client.send(message)
        except UpstreamUnavailable as exc:
            logger.error(f"push: delivery failed for user={owner_id}: {exc}")
            return False
        except Exception:
            logger.exception(f"push: unexpected error sending to user={owner_id}")
            return False
        logger.info(f"push: sent {title!r} to user={owner_id}")
        return True
