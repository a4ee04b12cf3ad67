"""
Unit tests for Flow Manager

Tests command handling end to end with the shipped catalog and templates,
an in-memory store and a mocked enricher
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime

import pytest

from backend.commands import FlowState, GenerateOutput, ResumeFlow, StartFlow, SubmitAnswer
from backend.contracts import GuideContent
from backend.core.flow_manager import FlowManager, progress_message
from backend.core.flow_state_machine import FlowStateMachine
from backend.core.guide_enricher import EnrichmentParseIncomplete, EnrichmentUnavailable
from backend.core.question_catalog import QuestionCatalog
from backend.core.template_assembler import TemplateAssembler, TemplateRegistry, build_default_registry
from backend.persistence import MemberStore
from backend.results import IllegalCommand, OutputReady, TemplateNotFound, TurnResult
from backend.utils.knowledge_base import KnowledgeBase

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CATALOG_PATH = os.path.join(ROOT, "data", "question_catalog.json")
KB_PATH = os.path.join(ROOT, "data", "knowledge_base.json")


# ========================
# Mock Modules
# ========================

class MockStore:
    """In-memory persistence collaborator"""

    def __init__(self, profiles=None):
        self.profiles = profiles or {}
        self.answer_stores = {}
        self.documents = []
        self.save_calls = 0

    def load_answer_store(self, user_id, flow_type):
        return dict(self.answer_stores.get((user_id, flow_type), {}))

    def save_answer_store(self, user_id, flow_type, answers):
        self.save_calls += 1
        self.answer_stores[(user_id, flow_type)] = dict(answers)

    def clear_answer_store(self, user_id, flow_type):
        self.answer_stores.pop((user_id, flow_type), None)

    def load_profile(self, user_id):
        return dict(self.profiles.get(user_id, {}))

    def save_document_description(self, user_id, description, guide_content=None):
        self.documents.append((user_id, description, guide_content))
        return f"doc{len(self.documents)}"


class MockEnricher:
    """Enricher returning canned content, or raising a canned error"""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def supports(self, guide_type):
        return guide_type in ("apostille", "bank-ratings")

    def enrich(self, guide_type, answers, profile):
        self.calls.append((guide_type, answers, profile))
        if self.error:
            raise self.error
        return GuideContent(
            guide_type=guide_type,
            raw_text="## Overview\nText",
            structured={"title": "Guide", "subtitle": "", "sections": [{"title": "Overview", "body": "Text"}]},
        )


# ========================
# Test Utilities
# ========================

def create_manager(store=None, enricher=None):
    catalog = QuestionCatalog(CATALOG_PATH)
    assembler = TemplateAssembler(
        build_default_registry(),
        KnowledgeBase(KB_PATH),
        catalog,
        clock=lambda: datetime(2025, 6, 1, 12, 0, 0),
    )
    return FlowManager(FlowStateMachine(catalog), assembler, store=store, enricher=enricher)


def complete_flow(manager, flow_type, values, user_id=None):
    result = manager.handle(StartFlow(flow_type=flow_type, user_id=user_id))
    for value in values:
        result = manager.handle(SubmitAnswer(value=value, state=result.state, user_id=user_id))
    return result


BANK_ANSWERS = ["daily", "essential", "important"]


# ========================
# Tests
# ========================

def test_rejects_incomplete_collaborators():
    with pytest.raises(TypeError):
        FlowManager(object(), object())


def test_start_flow():
    result = create_manager().handle(StartFlow(flow_type="cover-letter"))

    assert isinstance(result, TurnResult)
    assert result.prompt["id"] == "privacy_choice"
    assert not result.complete
    assert result.error is None
    assert result.turn_metadata["flow_type"] == "cover-letter"
    assert result.turn_metadata["flow_id"]
    assert result.state.flow_type == "cover-letter"


def test_start_unknown_flow():
    result = create_manager().handle(StartFlow(flow_type="tax-return"))

    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidFlowState"


def test_unknown_command():
    result = create_manager().handle("not a command")
    assert isinstance(result, IllegalCommand)
    assert result.command_type == "str"


def test_start_clears_answer_store():
    store = MockStore()
    store.answer_stores[("42", "cover-letter")] = {"visa_type": "student"}

    create_manager(store).handle(StartFlow(flow_type="cover-letter", user_id="42"))

    assert ("42", "cover-letter") not in store.answer_stores


def test_submit_advances_and_persists():
    store = MockStore()
    manager = create_manager(store)
    start = manager.handle(StartFlow(flow_type="cover-letter", user_id="42"))

    result = manager.handle(SubmitAnswer(value="actual", state=start.state, user_id="42"))

    assert result.prompt["id"] == "visa_type"
    assert result.turn_metadata["turn_count"] == 1
    assert result.turn_metadata["flow_id"] == start.turn_metadata["flow_id"]
    assert store.answer_stores[("42", "cover-letter")] == {"privacy_choice": "actual"}


def test_validation_error_reprompts_same_question():
    """Test an invalid answer returns the same question, state and no write"""
    store = MockStore()
    manager = create_manager(store)
    start = manager.handle(StartFlow(flow_type="cover-letter", user_id="42"))
    saves_before = store.save_calls

    result = manager.handle(SubmitAnswer(value="tourist", state=start.state, user_id="42"))

    assert isinstance(result, TurnResult)
    assert result.error["error_type"] == "InvalidAnswerType"
    assert result.error["question_id"] == "privacy_choice"
    assert result.prompt["id"] == "privacy_choice"
    assert result.state.to_json() == start.state.to_json()
    assert store.save_calls == saves_before


def test_missing_answer_error():
    manager = create_manager()
    start = manager.handle(StartFlow(flow_type="cover-letter"))

    result = manager.handle(SubmitAnswer(value="", state=start.state))

    assert result.error["error_type"] == "MissingAnswer"


def test_tampered_state_is_illegal():
    manager = create_manager()
    start = manager.handle(StartFlow(flow_type="cover-letter"))
    data = start.state.to_json()
    data["step_index"] = 6

    result = manager.handle(SubmitAnswer(value="retired", state=FlowState.from_json(data)))

    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidFlowState"


@pytest.mark.parametrize("flow_type", [["cover-letter"], {"flow": "cover-letter"}, 3])
def test_non_string_flow_type_is_illegal(flow_type):
    manager = create_manager()
    data = manager.handle(StartFlow(flow_type="cover-letter")).state.to_json()
    data["flow_type"] = flow_type

    result = manager.handle(SubmitAnswer(value="actual", state=FlowState.from_json(data)))
    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidFlowState"

    data["status"] = "complete"
    result = manager.handle(GenerateOutput(state=FlowState.from_json(data)))
    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidFlowState"


# ========================
# Member ids
# ========================

def test_email_member_id_persists(tmp_path):
    store = MemberStore(str(tmp_path))
    manager = create_manager(store)

    start = manager.handle(StartFlow(flow_type="cover-letter", user_id="jane.quimby@example.com"))
    result = manager.handle(SubmitAnswer(value="actual", state=start.state, user_id="jane.quimby@example.com"))

    assert result.prompt["id"] == "visa_type"
    assert store.load_answer_store("jane.quimby@example.com", "cover-letter") == {"privacy_choice": "actual"}


@pytest.mark.parametrize("command", [
    StartFlow(flow_type="cover-letter", user_id="   "),
    ResumeFlow(flow_type="cover-letter", user_id="   "),
    GenerateOutput(state=FlowState.from_json({}), user_id="   "),
])
def test_unusable_member_id_is_illegal(tmp_path, command):
    result = create_manager(MemberStore(str(tmp_path))).handle(command)

    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidUser"


# ========================
# Intro and progress
# ========================

def test_start_intro_with_profile_summary():
    profile = {"applicants": "spouse", "visa_type": "retirement", "target_location": "Lyon", "pets": "dog"}
    manager = create_manager(MockStore(profiles={"42": profile}))

    result = manager.handle(StartFlow(flow_type="cover-letter", user_id="42"))

    assert result.intro["title"] == "Visa Cover Letter"
    assert result.intro["kind"] == "document"
    assert result.intro["question_count"] == 6
    assert result.intro["needs_verification"]
    assert result.intro["profile_summary"] == [
        {"field": "applicants", "label": "Applying with", "value": "Me and my spouse/partner"},
        {"field": "visa_type", "label": "Visa type", "value": "Retirement"},
        {"field": "target_location", "label": "Target location", "value": "Lyon"},
    ]
    assert result.progress_message is None


def test_start_intro_without_profile():
    result = create_manager().handle(StartFlow(flow_type="bank-ratings"))

    assert result.intro["profile_summary"] == []
    assert not result.intro["needs_verification"]


def test_progress_message_near_the_end():
    """Test the note counts only questions visible under current answers"""
    manager = create_manager()

    result = complete_flow(manager, "cover-letter", ["actual"])
    assert result.progress_message is None
    assert result.intro is None
    assert result.turn_metadata["remaining"] == 5

    result = complete_flow(manager, "cover-letter", ["actual", "visitor", "alone", "renting"])
    assert result.prompt["id"] == "employment_status"
    assert result.progress_message == "Just 2 more questions..."

    result = manager.handle(SubmitAnswer(value="retired", state=result.state))
    assert result.progress_message == "Just 1 more question..."

    result = manager.handle(SubmitAnswer(value="", state=result.state))
    assert result.complete
    assert result.progress_message is None


@pytest.mark.parametrize("remaining, expected", [
    (0, None),
    (1, "Just 1 more question..."),
    (2, "Just 2 more questions..."),
    (3, None),
])
def test_progress_message(remaining, expected):
    assert progress_message(remaining) == expected


# ========================
# Resume
# ========================

def test_resume_from_store():
    store = MockStore()
    store.answer_stores[("42", "cover-letter")] = {"privacy_choice": "actual", "visa_type": "visitor"}
    manager = create_manager(store)

    result = manager.handle(ResumeFlow(flow_type="cover-letter", user_id="42"))

    assert result.prompt["id"] == "applicants"
    assert result.turn_metadata["turn_count"] == 2
    assert result.intro["title"] == "Visa Cover Letter"

    result = manager.handle(SubmitAnswer(value="alone", state=result.state, user_id="42"))
    assert result.prompt["id"] == "property_status"
    assert store.answer_stores[("42", "cover-letter")]["applicants"] == "alone"


def test_resume_completed_flow_generates():
    store = MockStore()
    store.answer_stores[("42", "bank-ratings")] = {
        "banking_needs": ["daily"], "english_support": "essential", "online_banking": "important",
    }
    manager = create_manager(store)

    result = manager.handle(ResumeFlow(flow_type="bank-ratings", user_id="42"))
    assert result.complete

    output = manager.handle(GenerateOutput(state=result.state, user_id="42"))
    assert isinstance(output, OutputReady)


def test_resume_needs_member():
    result = create_manager(MockStore()).handle(ResumeFlow(flow_type="cover-letter"))

    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidUser"


def test_resume_unknown_flow():
    result = create_manager(MockStore()).handle(ResumeFlow(flow_type="tax-return", user_id="42"))

    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidFlowState"


def test_profile_suggestion():
    """Test profile values pre-fill matching questions"""
    store = MockStore(profiles={"42": {"visa_type": "retirement", "applicants": "triplets"}})
    manager = create_manager(store)
    start = manager.handle(StartFlow(flow_type="cover-letter", user_id="42"))

    result = manager.handle(SubmitAnswer(value="actual", state=start.state, user_id="42"))
    assert result.prompt["suggestion"] == "retirement"

    result = manager.handle(SubmitAnswer(value="visitor", state=result.state, user_id="42"))
    assert result.prompt["id"] == "applicants"
    assert result.prompt["suggestion"] is None


def test_submit_after_complete_is_illegal():
    manager = create_manager()
    done = complete_flow(manager, "bank-ratings", BANK_ANSWERS)

    result = manager.handle(SubmitAnswer(value="daily", state=done.state))
    assert isinstance(result, IllegalCommand)


def test_generate_before_complete_is_illegal():
    manager = create_manager()
    start = manager.handle(StartFlow(flow_type="bank-ratings"))

    result = manager.handle(GenerateOutput(state=start.state))
    assert isinstance(result, IllegalCommand)


def test_generate_document():
    store = MockStore(profiles={"42": {"legal_first_name": "Jane", "legal_last_name": "Doe"}})
    manager = create_manager(store)
    done = complete_flow(manager, "cover-letter",
                         ["actual", "visitor", "alone", "renting", "retired", ""], user_id="42")
    assert done.complete
    assert done.prompt is None

    result = manager.handle(GenerateOutput(state=done.state, user_id="42"))

    assert isinstance(result, OutputReady)
    assert result.document_id == "doc1"
    assert result.description.document_type == "cover-letter"
    assert "Jane Doe" in result.description.paragraphs()
    assert result.preview.startswith("I am writing to submit")
    assert not result.enriched


def test_generate_revalidates_answers():
    manager = create_manager()
    done = complete_flow(manager, "bank-ratings", BANK_ANSWERS)
    data = done.state.to_json()
    del data["answers"]["english_support"]

    result = manager.handle(GenerateOutput(state=FlowState.from_json(data)))

    assert isinstance(result, IllegalCommand)
    assert result.error_type == "InvalidFlowState"


def test_generate_without_template():
    catalog = QuestionCatalog(CATALOG_PATH)
    manager = FlowManager(FlowStateMachine(catalog), TemplateAssembler(TemplateRegistry()))
    done = complete_flow(manager, "bank-ratings", BANK_ANSWERS)

    result = manager.handle(GenerateOutput(state=done.state))

    assert isinstance(result, TemplateNotFound)
    assert result.document_type == "bank-ratings"


def test_generate_with_enrichment():
    enricher = MockEnricher()
    manager = create_manager(enricher=enricher)
    done = complete_flow(manager, "bank-ratings", BANK_ANSWERS)

    result = manager.handle(GenerateOutput(state=done.state, use_ai=True))

    assert result.enriched
    assert result.guide_content.structured["sections"][0]["title"] == "Overview"
    assert result.warnings == ()
    assert result.description.document_type == "bank-ratings"


def test_enrichment_failure_falls_back_to_template():
    """Test an unavailable AI service still yields the plain guide"""
    enricher = MockEnricher(error=EnrichmentUnavailable("timeout", "took too long", retryable=True))
    manager = create_manager(enricher=enricher)
    done = complete_flow(manager, "bank-ratings", BANK_ANSWERS)

    result = manager.handle(GenerateOutput(state=done.state, use_ai=True))

    assert isinstance(result, OutputReady)
    assert not result.enriched
    assert result.guide_content is None
    assert "timeout" in result.warnings[0]
    assert result.description.metadata["ranking"]


def test_unstructured_enrichment_kept_with_warning():
    partial = GuideContent(guide_type="bank-ratings", raw_text="plain prose", structured=None, is_structured=False)
    manager = create_manager(enricher=MockEnricher(error=EnrichmentParseIncomplete(partial)))
    done = complete_flow(manager, "bank-ratings", BANK_ANSWERS)

    result = manager.handle(GenerateOutput(state=done.state, use_ai=True))

    assert result.enriched
    assert result.guide_content.raw_text == "plain prose"
    assert len(result.warnings) == 1


def test_use_ai_without_enricher():
    manager = create_manager()
    done = complete_flow(manager, "bank-ratings", BANK_ANSWERS)

    result = manager.handle(GenerateOutput(state=done.state, use_ai=True))

    assert not result.enriched
    assert result.warnings


def test_enricher_skipped_for_documents():
    enricher = MockEnricher()
    manager = create_manager(enricher=enricher)
    done = complete_flow(manager, "no-work-attestation", ["placeholders", "visitor", ""])

    result = manager.handle(GenerateOutput(state=done.state, use_ai=True))

    assert enricher.calls == []
    assert not result.enriched


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING FLOW MANAGER")
    print("="*60 + "\n")

    sys.exit(pytest.main([__file__, "-v"]))
