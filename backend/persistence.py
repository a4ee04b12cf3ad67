"""
Member data persistence.

Whole-file JSON storage for answer stores, profiles and generated
documents, one directory per member.
"""

import hashlib
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from backend.contracts import DocumentDescription, GuideContent
from backend.utils.helpers import generate_record_id

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class MemberStore:
    """
    Persistence collaborator backed by JSON files.

    Layout:
        outputs/members/USER-42/
            profile.json
            flows/cover-letter.json
            documents/a3f7e2b9.json

    Design:
    - Whole maps are read and written; no partial updates
    - Missing files read as empty (fresh member, fresh flow)
    - Document and flow ids are validated before they touch a path
    - Member ids come from upstream auth and may be anything (emails);
      ids outside the safe set get a digest-named directory
    """

    def __init__(self, base_dir: str = "outputs/members"):
        """
        Initialize persistence layer.

        Args:
            base_dir: Base directory for all members
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"MemberStore initialized: {self.base_dir}")

    # =========================================================================
    # Answer stores
    # =========================================================================

    def load_answer_store(self, user_id: str, flow_type: str) -> dict:
        """
        Load the saved answer map for one flow.

        Returns:
            dict: Answers ({} if the flow was never saved)
        """
        data = self._read(self._flow_path(user_id, flow_type))
        return data.get("answers", {}) if data else {}

    def save_answer_store(self, user_id: str, flow_type: str, answers: dict):
        """Overwrite the answer map for one flow."""
        self._write(self._flow_path(user_id, flow_type), {
            "flow_type": flow_type,
            "answers": answers,
            "updated_at": _now(),
        })
        logger.info(f"Saved answer store for {flow_type} ({len(answers)} answers)")

    def clear_answer_store(self, user_id: str, flow_type: str):
        path = self._flow_path(user_id, flow_type)
        if path.exists():
            path.unlink()
            logger.info(f"Cleared answer store for {flow_type}")

    # =========================================================================
    # Profiles
    # =========================================================================

    def load_profile(self, user_id: str) -> dict:
        return self._read(self._user_dir(user_id) / "profile.json") or {}

    def save_profile(self, user_id: str, profile: dict):
        self._write(self._user_dir(user_id) / "profile.json", profile)
        logger.info(f"Saved profile ({len(profile)} fields)")

    # =========================================================================
    # Documents
    # =========================================================================

    def save_document_description(
        self,
        user_id: str,
        description: DocumentDescription,
        guide_content: Optional[GuideContent] = None
    ) -> str:
        """
        Store a generated document.

        Args:
            user_id: Member identifier
            description: Assembled description
            guide_content: AI prose attached to a guide, if any

        Returns:
            str: Document id
        """
        document_id = generate_record_id()
        record = {
            "id": document_id,
            "document_type": description.document_type,
            "title": description.title,
            "created_at": _now(),
            "description": description.to_dict(),
            "guide_content": guide_content.to_dict() if guide_content else None,
        }
        self._write(self._documents_dir(user_id) / f"{document_id}.json", record)
        logger.info(f"Saved document {document_id} ({description.document_type})")
        return document_id

    def load_document(self, user_id: str, document_id: str) -> Optional[dict]:
        """
        Returns:
            dict: Stored record, None if the member has no such document
        """
        _check_id(document_id, "document_id")
        return self._read(self._documents_dir(user_id) / f"{document_id}.json")

    def list_documents(self, user_id: str) -> List[dict]:
        """Summaries of a member's documents, newest first."""
        doc_dir = self._documents_dir(user_id)
        if not doc_dir.exists():
            return []

        summaries = []
        for path in doc_dir.glob("*.json"):
            record = self._read(path)
            if record:
                summaries.append({
                    "id": record["id"],
                    "document_type": record["document_type"],
                    "title": record["title"],
                    "created_at": record["created_at"],
                })
        return sorted(summaries, key=lambda s: s["created_at"], reverse=True)

    # =========================================================================
    # Paths and IO
    # =========================================================================

    def _user_dir(self, user_id: str) -> Path:
        return self.base_dir / member_dir_name(user_id)

    def _flow_path(self, user_id: str, flow_type: str) -> Path:
        _check_id(flow_type, "flow_type")
        return self._user_dir(user_id) / "flows" / f"{flow_type}.json"

    def _documents_dir(self, user_id: str) -> Path:
        return self._user_dir(user_id) / "documents"

    def _read(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _write(self, path: Path, data: dict):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)


def _check_id(value: str, name: str):
    if not isinstance(value, str) or not _SAFE_ID.match(value):
        raise ValueError(f"Invalid {name}: {value!r}")


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def member_dir_name(user_id: str) -> str:
    """
    Directory name for a member.

    Examples:
        >>> member_dir_name("42")
        'USER-42'
        >>> member_dir_name("jane@example.com")[:7]
        'MEMBER-'

    Raises:
        ValueError: If user_id is not a non-empty string
    """
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValueError(f"Invalid user_id: {user_id!r}")
    if _SAFE_ID.match(user_id):
        return f"USER-{user_id}"
    # Different prefix, so a digest can never collide with a literal id
    digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:32]
    return f"MEMBER-{digest}"
