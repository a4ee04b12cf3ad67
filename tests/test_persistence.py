"""
Unit tests for MemberStore

Uses pytest's tmp_path so every test gets a fresh directory
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

import backend.persistence as persistence
from backend.contracts import DocumentDescription, GuideContent
from backend.core.template_fields import paragraph
from backend.persistence import MemberStore, member_dir_name


def make_description(document_type="cover-letter", title="Visa Cover Letter"):
    return DocumentDescription(
        document_type=document_type,
        title=title,
        language="en",
        sections=(paragraph("Dear Visa Officer,"),),
        generated_at="2025-06-01T12:00:00",
    )


def test_answer_store_roundtrip(tmp_path):
    store = MemberStore(str(tmp_path))

    assert store.load_answer_store("42", "cover-letter") == {}

    store.save_answer_store("42", "cover-letter", {"visa_type": "visitor", "income_sources": ["savings"]})
    assert store.load_answer_store("42", "cover-letter") == {"visa_type": "visitor", "income_sources": ["savings"]}
    assert store.load_answer_store("43", "cover-letter") == {}

    store.clear_answer_store("42", "cover-letter")
    assert store.load_answer_store("42", "cover-letter") == {}


def test_profile_roundtrip(tmp_path):
    store = MemberStore(str(tmp_path))

    assert store.load_profile("42") == {}
    store.save_profile("42", {"legal_first_name": "Élodie"})
    assert store.load_profile("42") == {"legal_first_name": "Élodie"}


def test_layout_on_disk(tmp_path):
    store = MemberStore(str(tmp_path))
    store.save_answer_store("42", "apostille", {})

    assert (tmp_path / "USER-42" / "flows" / "apostille.json").exists()


@pytest.mark.parametrize("bad_id", ["", "   ", None, 42])
def test_invalid_ids_rejected(tmp_path, bad_id):
    store = MemberStore(str(tmp_path))

    with pytest.raises(ValueError):
        store.load_profile(bad_id)


@pytest.mark.parametrize("user_id", ["jane.quimby@example.com", "../etc", "a/b", "x" * 65])
def test_unsafe_member_ids_get_digest_directory(tmp_path, user_id):
    store = MemberStore(str(tmp_path))
    store.save_profile(user_id, {"display_name": "Jane"})

    assert store.load_profile(user_id) == {"display_name": "Jane"}
    assert [p.name for p in tmp_path.iterdir()] == [member_dir_name(user_id)]
    assert member_dir_name(user_id).startswith("MEMBER-")


def test_member_dir_names_are_distinct():
    assert member_dir_name("jane@example.com") != member_dir_name("john@example.com")
    assert member_dir_name("42") == "USER-42"


def test_invalid_flow_type_rejected(tmp_path):
    with pytest.raises(ValueError):
        MemberStore(str(tmp_path)).save_answer_store("42", "../../profile", {})


def test_document_roundtrip(tmp_path):
    store = MemberStore(str(tmp_path))
    content = GuideContent(guide_type="apostille", raw_text="## A\nB",
                           structured={"title": "Apostille Guide", "subtitle": "", "sections": []})

    document_id = store.save_document_description("42", make_description("apostille", "Apostille Guide"), content)
    record = store.load_document("42", document_id)

    assert record["id"] == document_id
    assert record["document_type"] == "apostille"
    assert record["description"]["sections"][0]["text"] == "Dear Visa Officer,"
    assert record["guide_content"]["raw_text"] == "## A\nB"


def test_document_belongs_to_member(tmp_path):
    store = MemberStore(str(tmp_path))
    document_id = store.save_document_description("42", make_description())

    assert store.load_document("43", document_id) is None
    assert store.load_document("42", "missing") is None
    with pytest.raises(ValueError):
        store.load_document("42", "../USER-43/profile")


def test_list_documents_newest_first(tmp_path, monkeypatch):
    store = MemberStore(str(tmp_path))
    times = iter(["2025-06-01T10:00:00", "2025-06-02T10:00:00"])
    monkeypatch.setattr(persistence, "_now", lambda: next(times))

    first = store.save_document_description("42", make_description())
    second = store.save_document_description("42", make_description("financial-statement", "Financial Statement"))

    summaries = store.list_documents("42")
    assert [s["id"] for s in summaries] == [second, first]
    assert summaries[0]["title"] == "Financial Statement"
    assert "description" not in summaries[0]
    assert store.list_documents("43") == []


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING MEMBER STORE")
    print("="*60 + "\n")

    sys.exit(pytest.main([__file__, "-v"]))
