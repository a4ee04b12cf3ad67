"""
Template Assembler - Completed answers + profile -> DocumentDescription

Responsibilities:
- Hold the registry of {type_id -> template function}
- Derive the output language from the profile
- Build the TemplateContext (field fallback chain, knowledge snapshot,
  structured lead times from the catalog)
- Stamp the single time-dependent field (generated_at)
- Produce a short text preview of a description

Design principles:
- Pure transform: no network calls, no persistence
- Registry is injected, never a module-level singleton
- Unknown types are a normal result (TemplateNotFound), not an exception
"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Union

from backend.contracts import DocumentDescription, Duration
from backend.core.template_fields import (
    ROLE_BODY,
    SECTION_PARAGRAPH,
    FieldResolver,
    TemplateContext,
)
from backend.results import TemplateNotFound

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_LOCATION = "us"
DESTINATION_LOCATION = "france"

PREVIEW_PARAGRAPHS = 2
PREVIEW_CHARS = 500

TemplateFunction = Callable[[TemplateContext], dict]


class TemplateRegistry:
    """
    Maps type ids to template functions.

    New document or guide types are added by registering a function;
    nothing else in the assembler changes.
    """

    def __init__(self):
        self._templates: Dict[str, TemplateFunction] = {}
        self._kinds: Dict[str, str] = {}

    def register(self, type_id: str, template: TemplateFunction, kind: str = "document"):
        """
        Raises:
            ValueError: If type_id is already registered
            TypeError: If template is not callable
        """
        if type_id in self._templates:
            raise ValueError(f"Template already registered: {type_id}")
        if not callable(template):
            raise TypeError(f"Template for {type_id} must be callable")
        self._templates[type_id] = template
        self._kinds[type_id] = kind

    def get(self, type_id: str) -> Optional[TemplateFunction]:
        return self._templates.get(type_id)

    def has(self, type_id: str) -> bool:
        return type_id in self._templates

    def kind(self, type_id: str) -> Optional[str]:
        return self._kinds.get(type_id)

    def types(self, kind: Optional[str] = None) -> List[str]:
        return [t for t in self._templates if kind is None or self._kinds[t] == kind]


def build_default_registry() -> TemplateRegistry:
    """Registry with every built-in document and guide template."""
    from backend.core.document_templates import register_document_templates
    from backend.core.guide_templates import register_guide_templates

    registry = TemplateRegistry()
    register_document_templates(registry)
    register_guide_templates(registry)
    return registry


def select_language(profile: Optional[dict]) -> str:
    """
    Output language from the profile's application location.

    Applying from inside France -> French (prefecture); anywhere else,
    including a missing location -> English (US consulate).
    """
    location = (profile or {}).get("application_location") or DEFAULT_APPLICATION_LOCATION
    return "fr" if str(location).strip().lower() == DESTINATION_LOCATION else "en"


class TemplateAssembler:
    """
    Deterministic assembly of documents and plain guides.

    Usage:
        assembler = TemplateAssembler(build_default_registry(), knowledge_base, catalog)
        result = assembler.assemble("cover-letter", answers, profile)
    """

    def __init__(self, registry: TemplateRegistry, knowledge_base=None, catalog=None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            registry: TemplateRegistry
            knowledge_base: Optional collaborator with get_snapshot(topic)
            catalog: Optional QuestionCatalog, source of structured lead times
            clock: Returns the current datetime; injected for tests
        """
        if not callable(getattr(registry, "get", None)):
            raise TypeError("registry must have callable get() method")
        if knowledge_base is not None and not callable(getattr(knowledge_base, "get_snapshot", None)):
            raise TypeError("knowledge_base must have callable get_snapshot() method")

        self.registry = registry
        self.knowledge_base = knowledge_base
        self.catalog = catalog
        self.clock = clock or datetime.now

        logger.info(f"Template assembler initialized with {len(registry.types())} templates")

    def assemble(
        self,
        document_type: str,
        answers: Optional[dict],
        profile: Optional[dict],
        as_of: Optional[date] = None
    ) -> Union[DocumentDescription, TemplateNotFound]:
        """
        Render a completed Answer Store + Profile Record.

        Args:
            document_type: Registry key
            answers: Completed answer map
            profile: Profile Record (read-only)
            as_of: Reference date for date arithmetic (defaults to today)

        Returns:
            DocumentDescription, or TemplateNotFound for unknown types
        """
        template = self.registry.get(document_type)
        if template is None:
            logger.warning(f"No template registered for type: {document_type}")
            return TemplateNotFound(
                document_type=document_type,
                reason=f"Unknown document or guide type: {document_type}",
            )

        now = self.clock()
        ctx = TemplateContext(
            document_type=document_type,
            language=select_language(profile),
            fields=FieldResolver(answers, profile),
            knowledge=self._snapshot(document_type),
            as_of=as_of or now.date(),
            lead_times=self._lead_times(document_type),
        )

        built = template(ctx)

        description = DocumentDescription(
            document_type=document_type,
            title=built["title"],
            language=built.get("language", ctx.language),
            sections=tuple(built["sections"]),
            subtitle=built.get("subtitle"),
            metadata=built.get("metadata", {}),
            generated_at=now.isoformat(timespec="seconds"),
        )

        logger.info(
            f"Assembled {document_type} ({description.language}) "
            f"with {len(description.sections)} sections"
        )
        return description

    def _snapshot(self, document_type: str) -> dict:
        if self.knowledge_base is None:
            return {}
        return self.knowledge_base.get_snapshot(document_type)

    def _lead_times(self, document_type: str) -> Dict[str, Dict[str, Duration]]:
        if self.catalog is None or not self.catalog.has_flow(document_type):
            return {}
        return {
            question.id: dict(question.lead_times)
            for question in self.catalog.questions(document_type)
            if question.lead_times
        }


def preview(description: DocumentDescription) -> str:
    """
    Short text preview of a description.

    First two body paragraphs joined by a blank line, with '[...]' when
    more follow; descriptions without body paragraphs fall back to the
    first 500 characters of their text, then to the title.
    """
    body = [
        s["text"] for s in description.sections
        if s.get("type") == SECTION_PARAGRAPH and s.get("role", ROLE_BODY) == ROLE_BODY
    ]

    if body:
        text = "\n\n".join(body[:PREVIEW_PARAGRAPHS])
        if len(body) > PREVIEW_PARAGRAPHS:
            text += "\n\n[...]"
        return text

    flat = "\n".join(_section_text(s) for s in description.sections).strip()
    if flat:
        return flat[:PREVIEW_CHARS] + ("..." if len(flat) > PREVIEW_CHARS else "")

    return description.title


def _section_text(section: dict) -> str:
    if "text" in section:
        return section["text"]
    if "items" in section:
        return "\n".join(entry["label"] for entry in section["items"])
    if "rows" in section:
        return "\n".join(" | ".join(str(cell) for cell in row) for row in section["rows"])
    return ""
