"""
Support tickets - two-party messaging between members and staff.

Tickets are stored whole in one JSON file. Each ticket keeps its replies
in order plus one unread flag per side.

Rules:
- A new member ticket is unread for staff
- A reply flips the unread flags toward the other side
- Members cannot reply to a closed ticket; a staff reply reopens it
- Members only ever see their own tickets
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from backend.utils.helpers import generate_record_id

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"
TICKET_STATUSES = (STATUS_OPEN, STATUS_CLOSED)

STAFF_AUTHOR_ID = "staff"

WELCOME_SUBJECT = "Welcome to Relo2France!"
WELCOME_MESSAGE = """Welcome to Relo2France, {first_name}! We're thrilled to have you join our community of people planning their move to France.

Here's what you can do with your membership:

- Dashboard: track your relocation progress.
- Document Generator: create properly formatted documents for your French visa application.
- Personalized Guides: apostille, pet relocation, French mortgages and bank comparisons.
- Health Insurance Check: upload your certificate and we'll review it against visa requirements.

Getting started:

1. Complete your Visa Profile so we can personalize your documents.
2. Generate your first document.

If you have any questions about your membership or find any errors on the site, reply to this message.

À bientôt!
The Relo2France Team"""


class TicketNotFound(Exception):
    """Ticket does not exist or belongs to another member."""
    pass


class TicketClosed(Exception):
    """Member tried to reply to a closed ticket."""
    pass


class SupportTickets:
    """
    Member/staff messaging backed by a JSON file.

    Usage:
        tickets = SupportTickets("outputs/messages")
        ticket_id = tickets.create_ticket("42", "Question", "Hello")
    """

    def __init__(self, store_dir: str = "outputs/messages"):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.store_dir / "tickets.json"
        logger.info(f"SupportTickets initialized: {self.path}")

    # =========================================================================
    # Creating and replying
    # =========================================================================

    def create_ticket(self, user_id: str, subject: str, content: str) -> str:
        """
        Open a ticket from a member; the first message becomes the first reply.

        Raises:
            ValueError: If the member id, subject or content is empty
        """
        return self._create(user_id, subject, content, author_id=user_id, is_staff=False)

    def create_staff_ticket(self, user_id: str, subject: str, content: str,
                            staff_id: str = STAFF_AUTHOR_ID) -> str:
        """Open a ticket from staff to a member (unread for the member)."""
        return self._create(user_id, subject, content, author_id=staff_id, is_staff=True)

    def add_reply(self, ticket_id: str, author_id: str, content: str, is_staff: bool = False) -> str:
        """
        Append a reply.

        Args:
            ticket_id: Ticket identifier
            author_id: Member or staff identifier
            content: Reply text
            is_staff: Staff reply (reopens closed tickets)

        Returns:
            str: Reply id

        Raises:
            ValueError: If content is empty
            TicketNotFound: Unknown ticket, or a member replying to someone else's
            TicketClosed: Member reply to a closed ticket
        """
        content = _required(content, "Reply content")
        data = self._load()
        ticket = self._find(data, ticket_id, None if is_staff else author_id)

        if ticket["status"] == STATUS_CLOSED:
            if not is_staff:
                raise TicketClosed(f"Ticket {ticket_id} is closed")
            ticket["status"] = STATUS_OPEN
            logger.info(f"Ticket {ticket_id} reopened by staff reply")

        reply_id = generate_record_id()
        now = _now()
        ticket["replies"].append({
            "id": reply_id,
            "author_id": author_id,
            "content": content,
            "is_staff": is_staff,
            "created_at": now,
        })
        ticket["updated_at"] = now
        ticket["has_unread_user"] = is_staff
        ticket["has_unread_staff"] = not is_staff

        self._save(data)
        logger.info(f"Reply added to ticket {ticket_id} ({'staff' if is_staff else 'member'})")
        return reply_id

    def send_welcome(self, user_id: str, first_name: Optional[str] = None) -> Optional[str]:
        """
        Send the welcome ticket once per member.

        Returns:
            str: Ticket id, None if the welcome was already sent
        """
        data = self._load()
        if user_id in data["welcome_sent"]:
            return None

        ticket_id = self.create_staff_ticket(
            user_id, WELCOME_SUBJECT, WELCOME_MESSAGE.format(first_name=first_name or "there")
        )

        data = self._load()
        data["welcome_sent"][user_id] = _now()
        self._save(data)
        return ticket_id

    # =========================================================================
    # Reading
    # =========================================================================

    def get_ticket(self, ticket_id: str, user_id: Optional[str] = None) -> dict:
        """
        Args:
            user_id: When given, the ticket must belong to this member

        Raises:
            TicketNotFound: Unknown ticket or ownership mismatch
        """
        return self._find(self._load(), ticket_id, user_id)

    def list_tickets(self, user_id: Optional[str] = None, status: str = "all") -> List[dict]:
        """
        Ticket summaries without replies.

        Members (user_id given) see their own tickets, newest first. Staff
        (user_id None) see every ticket, unread ones first.
        """
        tickets = list(self._load()["tickets"].values())
        if user_id is not None:
            tickets = [t for t in tickets if t["user_id"] == user_id]
        if status != "all":
            tickets = [t for t in tickets if t["status"] == status]

        tickets.sort(key=lambda t: t["updated_at"], reverse=True)
        if user_id is None:
            tickets.sort(key=lambda t: not t["has_unread_staff"])

        return [{k: v for k, v in t.items() if k != "replies"} | {"reply_count": len(t["replies"])}
                for t in tickets]

    def unread_count(self, user_id: Optional[str] = None, staff: bool = False) -> int:
        """Unread tickets for a member, or open tickets unread by staff."""
        tickets = self._load()["tickets"].values()
        if staff:
            return sum(1 for t in tickets if t["has_unread_staff"] and t["status"] != STATUS_CLOSED)
        return sum(1 for t in tickets if t["user_id"] == user_id and t["has_unread_user"])

    # =========================================================================
    # Updating
    # =========================================================================

    def mark_read(self, ticket_id: str, by_staff: bool = False, user_id: Optional[str] = None):
        data = self._load()
        ticket = self._find(data, ticket_id, None if by_staff else user_id)
        ticket["has_unread_staff" if by_staff else "has_unread_user"] = False
        self._save(data)

    def set_status(self, ticket_id: str, status: str):
        """
        Raises:
            ValueError: If status is not open or closed
            TicketNotFound: Unknown ticket
        """
        if status not in TICKET_STATUSES:
            raise ValueError(f"Invalid ticket status: {status}")
        data = self._load()
        ticket = self._find(data, ticket_id)
        ticket["status"] = status
        ticket["updated_at"] = _now()
        self._save(data)
        logger.info(f"Ticket {ticket_id} set to {status}")

    def delete_ticket(self, ticket_id: str, user_id: Optional[str] = None):
        data = self._load()
        self._find(data, ticket_id, user_id)
        del data["tickets"][ticket_id]
        self._save(data)
        logger.info(f"Ticket {ticket_id} deleted")

    # =========================================================================
    # Storage
    # =========================================================================

    def _create(self, user_id, subject, content, author_id, is_staff) -> str:
        user_id = _required(user_id, "Member id")
        subject = _required(subject, "Subject")
        content = _required(content, "Message content")

        ticket_id = generate_record_id()
        now = _now()
        data = self._load()
        data["tickets"][ticket_id] = {
            "id": ticket_id,
            "user_id": user_id,
            "subject": subject,
            "status": STATUS_OPEN,
            "has_unread_staff": not is_staff,
            "has_unread_user": is_staff,
            "created_at": now,
            "updated_at": now,
            "replies": [{
                "id": generate_record_id(),
                "author_id": author_id,
                "content": content,
                "is_staff": is_staff,
                "created_at": now,
            }],
        }
        self._save(data)
        logger.info(f"Ticket {ticket_id} created ({'staff' if is_staff else 'member'})")
        return ticket_id

    def _find(self, data: dict, ticket_id: str, user_id: Optional[str] = None) -> dict:
        ticket = data["tickets"].get(ticket_id)
        if ticket is None or (user_id is not None and ticket["user_id"] != user_id):
            raise TicketNotFound(f"Ticket not found: {ticket_id}")
        return ticket

    def _load(self) -> dict:
        if not self.path.exists():
            return {"tickets": {}, "welcome_sent": {}}
        with open(self.path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _save(self, data: dict):
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)


def _required(value: Optional[str], name: str) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValueError(f"{name} is required")
    return text


def _now() -> str:
    return datetime.now().isoformat(timespec="microseconds")
