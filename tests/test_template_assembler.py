"""
Unit tests for Template Assembler and document templates

Tests registry behavior, determinism, privacy placeholders, the
answers -> profile -> default fallback chain, language selection
and previews
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
from datetime import datetime

import pytest

from backend.contracts import DocumentDescription
from backend.core.question_catalog import QuestionCatalog
from backend.core.template_assembler import (
    TemplateAssembler,
    TemplateRegistry,
    build_default_registry,
    preview,
    select_language,
)
from backend.core.template_fields import PII_PROFILE_FIELDS, checklist, header, item, paragraph
from backend.results import TemplateNotFound
from backend.utils.knowledge_base import KnowledgeBase

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CATALOG_PATH = os.path.join(ROOT, "data", "question_catalog.json")
KB_PATH = os.path.join(ROOT, "data", "knowledge_base.json")

PROFILE = {
    "legal_first_name": "Jane",
    "legal_last_name": "Quimby",
    "spouse_name": "Samuel Quimby",
    "employer_name": "Initech",
    "property_address": "12 Rue des Lilas, 33000 Bordeaux",
    "host_name": "Marie Curie",
    "current_state": "CA",
    "applicants": "spouse",
    "employment_status": "employed",
    "income_sources": ["employment", "savings"],
    "employment_amount": "$80,000",
    "savings_amount": 50000,
}


def fixed_clock(hour=12):
    return lambda: datetime(2025, 6, 1, hour, 0, 0)


def create_assembler(clock=None):
    return TemplateAssembler(
        build_default_registry(),
        KnowledgeBase(KB_PATH),
        QuestionCatalog(CATALOG_PATH),
        clock=clock or fixed_clock(),
    )


# ========================
# Registry
# ========================

def test_registry_rejects_duplicates():
    registry = TemplateRegistry()
    registry.register("memo", lambda ctx: {"title": "Memo", "sections": []})

    with pytest.raises(ValueError):
        registry.register("memo", lambda ctx: {"title": "Memo", "sections": []})


def test_registry_rejects_non_callable():
    with pytest.raises(TypeError):
        TemplateRegistry().register("memo", "not a function")


def test_default_registry_kinds():
    registry = build_default_registry()

    assert set(registry.types("document")) == {
        "cover-letter", "financial-statement", "no-work-attestation", "accommodation-letter",
    }
    assert set(registry.types("guide")) == {
        "apostille", "pet-relocation", "french-mortgages", "bank-ratings",
    }


def test_new_type_added_by_registration():
    """Test a new document type needs only a registered function"""
    registry = TemplateRegistry()
    registry.register("memo", lambda ctx: {
        "title": "Memo",
        "sections": [paragraph(f"Hello {ctx.fields.value('name', default='there')}")],
    })

    result = TemplateAssembler(registry).assemble("memo", {"name": "Jane"}, {})

    assert result.paragraphs() == ("Hello Jane",)


def test_unknown_type_is_result_not_exception():
    result = create_assembler().assemble("tax-return", {}, {})

    assert isinstance(result, TemplateNotFound)
    assert result.document_type == "tax-return"


# ========================
# Assembly properties
# ========================

def test_deterministic_except_timestamp():
    answers = {"privacy_choice": "actual", "visa_type": "visitor", "property_status": "purchased",
               "target_location": "Bordeaux"}

    first = create_assembler(fixed_clock(9)).assemble("cover-letter", answers, PROFILE).to_dict()
    second = create_assembler(fixed_clock(17)).assemble("cover-letter", answers, PROFILE).to_dict()

    assert first["generated_at"] != second["generated_at"]
    first.pop("generated_at")
    second.pop("generated_at")
    assert first == second


def test_placeholder_mode_hides_profile_pii():
    """Test no profile PII value appears anywhere in placeholder mode"""
    assembler = create_assembler()
    cases = {
        "cover-letter": {"privacy_choice": "placeholders", "visa_type": "visitor"},
        "financial-statement": {"privacy_choice": "placeholders"},
        "no-work-attestation": {"privacy_choice": "placeholders"},
        "accommodation-letter": {"privacy_choice": "placeholders", "accommodation_type": "host"},
    }

    for document_type, answers in cases.items():
        text = json.dumps(assembler.assemble(document_type, answers, PROFILE).to_dict(), ensure_ascii=False)
        for key in PII_PROFILE_FIELDS:
            if key in PROFILE:
                assert PROFILE[key] not in text, f"{key} leaked into {document_type}"


def test_privacy_defaults_to_placeholders():
    result = create_assembler().assemble("no-work-attestation", {}, PROFILE)
    assert "Jane" not in " ".join(result.paragraphs())
    assert "[YOUR FULL NAME]" in result.paragraphs()


def test_profile_fallback_matches_answer():
    """Test a field removed from answers but present in the profile renders the same"""
    with_answer = create_assembler().assemble(
        "cover-letter",
        {"privacy_choice": "actual", "employment_status": "employed", "employer_name": "Initech"},
        {"legal_first_name": "Jane", "employer_name": "Initech"},
    )
    from_profile = create_assembler().assemble(
        "cover-letter",
        {"privacy_choice": "actual", "employment_status": "employed"},
        {"legal_first_name": "Jane", "employer_name": "Initech"},
    )

    assert with_answer.paragraphs() == from_profile.paragraphs()
    assert any("employed by Initech" in p for p in from_profile.paragraphs())


def test_answer_overrides_profile():
    result = create_assembler().assemble(
        "cover-letter",
        {"privacy_choice": "actual", "employment_status": "retired"},
        {"employment_status": "employed", "employer_name": "Initech"},
    )
    assert any(p.startswith("I am retired") for p in result.paragraphs())


def test_cover_letter_without_spouse_or_property():
    """Test single applicant with no property gets neither paragraph"""
    result = create_assembler().assemble(
        "cover-letter",
        {"privacy_choice": "actual", "property_status": "none"},
        {"applicants": "alone", "employment_status": "retired"},
    )
    paragraphs = result.paragraphs()

    assert not any("spouse" in p.lower() for p in paragraphs)
    assert not any("property in" in p for p in paragraphs)
    assert result.metadata["applicants"] == 1


def test_cover_letter_with_spouse_and_property():
    result = create_assembler().assemble(
        "cover-letter",
        {"privacy_choice": "actual", "applicants": "spouse", "spouse_name": "Sam",
         "property_status": "purchasing", "target_location": "Lyon"},
        {"legal_first_name": "Jane"},
    )
    paragraphs = result.paragraphs()

    assert any("My spouse, Sam," in p for p in paragraphs)
    assert any("purchasing property in Lyon" in p for p in paragraphs)
    assert any(p.startswith("My spouse and I are financially") for p in paragraphs)


def test_consulate_from_profile_state():
    result = create_assembler().assemble("cover-letter", {"privacy_choice": "actual"}, {"current_state": "NY"})
    recipient = [s for s in result.sections if s.get("role") == "recipient"][0]
    assert recipient["lines"][-1] == "New York, NY"


def test_french_language_from_profile():
    result = create_assembler().assemble(
        "cover-letter", {"privacy_choice": "actual"}, {"application_location": "France"}
    )

    assert result.language == "fr"
    assert "Madame, Monsieur," in result.paragraphs()


def test_no_work_attestation_always_english():
    result = create_assembler().assemble(
        "no-work-attestation", {"activities": "painting"}, {"application_location": "france"}
    )

    assert result.language == "en"
    assert any("focus on painting" in p for p in result.paragraphs())


def test_financial_statement_amounts():
    result = create_assembler().assemble(
        "financial-statement", {"privacy_choice": "actual", "include_table": "yes"}, PROFILE
    )
    summary = [s for s in result.sections if s["type"] == "table"][0]

    assert summary["rows"][0] == ["Employment Income", "$80,000"]
    assert summary["rows"][-1] == ["Total", "$130,000"]
    assert result.metadata["income_sources"] == ["employment", "savings"]


def test_financial_statement_placeholders():
    result = create_assembler().assemble(
        "financial-statement", {"privacy_choice": "placeholders", "include_table": "yes"}, PROFILE
    )
    summary = [s for s in result.sections if s["type"] == "table"][0]

    assert summary["rows"][0][1] == "$[EMPLOYMENT INCOME AMOUNT]"
    assert summary["rows"][-1] == ["Total", "$[TOTAL AMOUNT]"]


def test_financial_statement_without_table():
    result = create_assembler().assemble("financial-statement", {"include_table": "no"}, PROFILE)
    assert not any(s["type"] == "table" for s in result.sections)


def test_accommodation_purchase_pending():
    result = create_assembler().assemble(
        "accommodation-letter",
        {"privacy_choice": "actual", "accommodation_type": "purchase_pending",
         "purchase_price": 350000, "expected_closing": "March 2026", "applicants": "spouse_kids"},
        PROFILE,
    )
    paragraphs = result.paragraphs()

    assert any("€350,000" in p and "March 2026" in p for p in paragraphs)
    assert "My spouse and our children will live with me at this address." in paragraphs


# ========================
# Language and preview
# ========================

def test_select_language():
    assert select_language(None) == "en"
    assert select_language({"application_location": "us"}) == "en"
    assert select_language({"application_location": " France "}) == "fr"


def test_preview_first_two_body_paragraphs():
    result = create_assembler().assemble("cover-letter", {"privacy_choice": "actual"}, PROFILE)
    text = preview(result)

    assert text.startswith("I am writing to submit")
    assert text.endswith("[...]")
    assert "Dear Visa Officer" not in text


def test_preview_without_paragraphs():
    description = DocumentDescription(
        document_type="checklist-only",
        title="Checklist",
        language="en",
        sections=(header("Steps"), checklist([item("Book flight")])),
    )
    assert preview(description) == "Steps\nBook flight"

    empty = DocumentDescription(document_type="empty", title="Nothing here", language="en", sections=())
    assert preview(empty) == "Nothing here"


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING TEMPLATE ASSEMBLER")
    print("="*60 + "\n")

    sys.exit(pytest.main([__file__, "-v"]))
