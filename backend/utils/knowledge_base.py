"""
Knowledge Base - Slowly-changing reference data injected into guides

Responsibilities:
- Load reference data (fees, processing times, thresholds) from JSON
- Validate structured durations at load time
- Hand out read-only snapshots per topic

Design principles:
- Dependency injection (no module-level singleton)
- Snapshots are deep copies; callers cannot mutate the loaded data
- Fail fast: malformed data raises on initialization
"""

import copy
import json
import logging
from pathlib import Path

from backend.contracts import DURATION_UNIT_DAYS

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Read-only reference dataset keyed by topic."""

    def __init__(self, path: str):
        """
        Load knowledge base from disk.

        Args:
            path: Path to knowledge_base.json

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If the data fails validation
        """
        self.path = Path(path)

        if not self.path.exists():
            raise FileNotFoundError(f"Knowledge base not found: {path}")

        with open(self.path, 'r', encoding='utf-8') as f:
            raw = json.load(f)

        self.version = raw.get("version", "unversioned")
        self.topics = raw.get("topics", {})

        self._validate()

        logger.info(f"Knowledge base {self.version} loaded with {len(self.topics)} topics")

    @classmethod
    def from_dict(cls, data: dict) -> "KnowledgeBase":
        """Build from an in-memory dict (tests, embedded defaults)."""
        instance = cls.__new__(cls)
        instance.path = None
        instance.version = data.get("version", "unversioned")
        instance.topics = copy.deepcopy(data.get("topics", {}))
        instance._validate()
        return instance

    def get_snapshot(self, topic: str) -> dict:
        """
        Get reference data for a topic.

        Args:
            topic: Topic key, usually a guide type (e.g. 'apostille')

        Returns:
            dict: Deep copy of the topic data, empty dict for unknown topics
        """
        if topic not in self.topics:
            logger.warning(f"No knowledge base data for topic: {topic}")
            return {}
        return copy.deepcopy(self.topics[topic])

    def _validate(self):
        """Check every 'processing_time' / 'lead_time' is a valid duration."""
        errors = []

        if not isinstance(self.topics, dict):
            raise ValueError("Knowledge base validation failed:\n  - 'topics' must be an object")

        def walk(node, trail):
            if isinstance(node, dict):
                for key, value in node.items():
                    if key in ("processing_time", "lead_time"):
                        errors.extend(_duration_errors(value, f"{trail}.{key}"))
                    else:
                        walk(value, f"{trail}.{key}")
            elif isinstance(node, list):
                for i, item in enumerate(node):
                    walk(item, f"{trail}[{i}]")

        walk(self.topics, "topics")

        if errors:
            error_msg = "Knowledge base validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)


def _duration_errors(value, where: str) -> list:
    if not isinstance(value, dict):
        return [f"{where}: duration must be an object with min, max, unit"]

    errors = []
    if value.get("unit") not in DURATION_UNIT_DAYS:
        errors.append(f"{where}: unknown unit '{value.get('unit')}'")
    lo, hi = value.get("min"), value.get("max")
    if not isinstance(lo, int) or not isinstance(hi, int):
        errors.append(f"{where}: min and max must be integers")
    elif lo < 0 or hi < lo:
        errors.append(f"{where}: expected 0 <= min <= max, got {lo}..{hi}")
    return errors
