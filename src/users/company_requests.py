"""Company requests: users ask for a company's questions and chat with admins."""

import logging
import sqlite3

from pydantic import ValidationError

from src.core import db
from src.core.errors import InputError, NotFoundError, PermissionDeniedError
from src.core.schemas import CompanyRequest, RequestMessage, RequestStatus

logger = logging.getLogger(__name__)

CLOSED_STATUSES = frozenset({"completed", "rejected"})
VALID_STATUSES = frozenset({"pending", "completed", "rejected"})


def _message(sender_id: str, content: str) -> RequestMessage:
    try:
        return RequestMessage(sender_id=sender_id, content=content)
    except ValidationError as e:
        msg = "Message must be between 1 and 500 characters"
        raise InputError(msg) from e


class RequestBoard:
    """Create, discuss and resolve company requests."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create(self, user_id: str, company: str, message: str | None = None) -> CompanyRequest:
        company = (company or "").strip()
        if not company:
            msg = "Please add a company name"
            raise InputError(msg)
        messages = [_message(user_id, message)] if message else []
        request_id = db.insert_request(self._conn, user_id, company, messages)
        logger.info("User '%s' requested company '%s' (#%d)", user_id, company, request_id)
        return self.get(request_id)

    def get(self, request_id: int) -> CompanyRequest:
        request = db.get_request(self._conn, request_id)
        if request is None:
            msg = f"Request not found: {request_id}"
            raise NotFoundError(msg)
        return request

    def list_all(self) -> list[CompanyRequest]:
        """All requests, newest first."""
        return db.list_requests(self._conn)

    def add_message(
        self,
        request_id: int,
        sender_id: str,
        content: str,
        *,
        is_admin: bool = False,
    ) -> CompanyRequest:
        """Post a message. Only the creator or an admin may post; closed
        requests accept messages from admins only."""
        if not content or not content.strip():
            msg = "Message content is required"
            raise InputError(msg)
        request = self.get(request_id)
        if not is_admin and request.user_id != sender_id:
            msg = "Not authorized to comment on this request"
            raise PermissionDeniedError(msg)
        if not is_admin and request.status in CLOSED_STATUSES:
            msg = f"Cannot send message when request is {request.status}"
            raise InputError(msg)

        db.add_request_message(self._conn, request_id, _message(sender_id, content))
        return self.get(request_id)

    def set_status(
        self,
        request_id: int,
        status: RequestStatus,
        *,
        is_admin: bool,
    ) -> CompanyRequest:
        if not is_admin:
            msg = "Only admins can change request status"
            raise PermissionDeniedError(msg)
        if status not in VALID_STATUSES:
            msg = f"Invalid status '{status}'"
            raise InputError(msg)
        if not db.update_request_status(self._conn, request_id, status):
            msg = f"Request not found: {request_id}"
            raise NotFoundError(msg)
        logger.info("Request #%d marked %s", request_id, status)
        return self.get(request_id)
