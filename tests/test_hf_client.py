"""
Unit tests for the local HuggingFace client

The model and tokenizer are replaced by small fakes, so nothing is
downloaded and no GPU is needed
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import torch

import backend.utils.hf_client as hf_client
from app import build_text_client
from backend.config import PROVIDER_LOCAL, Settings
from backend.contracts import Attachment
from backend.core.guide_enricher import EnrichmentUnavailable, GuideEnricher
from backend.utils.hf_client import DEVICE_CPU, HuggingFaceClient
from backend.utils.knowledge_base import KnowledgeBase
from backend.utils.llm_client import ERROR_API, ERROR_ATTACHMENT, TextGenerationError

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
KB_PATH = os.path.join(ROOT, "data", "knowledge_base.json")


# ========================
# Mock Modules
# ========================

class FakeInputs:
    def __init__(self):
        self.input_ids = torch.tensor([[1, 2, 3]])
        self.attention_mask = torch.ones_like(self.input_ids)


class FakeTokenizer:
    eos_token_id = 0

    def __call__(self, text, return_tensors=None):
        return FakeInputs()

    def decode(self, ids, skip_special_tokens=True):
        return f"decoded {len(ids)} tokens"


class FakeModel:
    def __init__(self, error=None):
        self.error = error

    def generate(self, input_ids, **kwargs):
        if self.error:
            raise self.error
        return torch.tensor([[1, 2, 3, 7, 8]])


def make_client(model):
    """Client with fakes in place of the loaded model"""
    client = HuggingFaceClient.__new__(HuggingFaceClient)
    client.model_name = "fake"
    client.device = DEVICE_CPU
    client.max_tokens = 16
    client.timeout = 5.0
    client.temperature = 0.0
    client.tokenizer = FakeTokenizer()
    client.model = model
    client.has_chat_template = False
    return client


# ========================
# Tests
# ========================

def test_generate_returns_completion_only():
    assert make_client(FakeModel()).generate("Write a guide") == "decoded 2 tokens"


@pytest.mark.parametrize("error", [
    RuntimeError("probability tensor contains inf"),
    ValueError("max_new_tokens must be positive"),
])
def test_generation_failure_is_typed(error):
    with pytest.raises(TextGenerationError) as exc_info:
        make_client(FakeModel(error)).generate("Write a guide")

    assert exc_info.value.kind == ERROR_API


def test_generation_failure_falls_back_in_enricher():
    """Test a local model crash surfaces as an unavailable service"""
    enricher = GuideEnricher(make_client(FakeModel(RuntimeError("boom"))), KnowledgeBase(KB_PATH))

    with pytest.raises(EnrichmentUnavailable) as exc_info:
        enricher.enrich("bank-ratings", {"banking_needs": ["daily"]}, {})

    assert exc_info.value.reason == ERROR_API


def test_attachment_rejected():
    attachment = Attachment(data=b"%PDF-1.4", media_type="application/pdf", filename="policy.pdf")

    with pytest.raises(TextGenerationError) as exc_info:
        make_client(FakeModel()).generate("Check this", attachment=attachment)

    assert exc_info.value.kind == ERROR_ATTACHMENT


def test_unknown_device_rejected():
    with pytest.raises(ValueError):
        HuggingFaceClient("fake", device="tpu")


def test_build_text_client_passes_device(monkeypatch):
    created = {}

    def fake_client(**kwargs):
        created.update(kwargs)
        return "local-client"

    monkeypatch.setattr(hf_client, "HuggingFaceClient", fake_client)
    settings = Settings(ai_enabled=True, llm_provider=PROVIDER_LOCAL, local_device=DEVICE_CPU)

    assert build_text_client(settings) == "local-client"
    assert created["device"] == DEVICE_CPU
    assert created["load_in_4bit"] is False


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING HUGGINGFACE CLIENT")
    print("="*60 + "\n")

    sys.exit(pytest.main([__file__, "-v"]))
