"""
Unit tests for the Anthropic client

Uses httpx.MockTransport so no request leaves the process
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import base64
import json

import httpx
import pytest

from backend.contracts import Attachment
from backend.utils.llm_client import (
    API_VERSION,
    AnthropicClient,
    TextGenerationError,
    attachment_block,
)


def create_client(handler, api_key="test-key"):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return AnthropicClient(api_key, http_client=http)


def ok_response(text="Bonjour"):
    return httpx.Response(200, json={
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 10, "output_tokens": 3},
    })


def test_generate_returns_text():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return ok_response()

    client = create_client(handler)
    assert client.generate("Say hello", max_tokens=50) == "Bonjour"

    assert seen["headers"]["x-api-key"] == "test-key"
    assert seen["headers"]["anthropic-version"] == API_VERSION
    assert seen["body"]["max_tokens"] == 50
    assert seen["body"]["messages"] == [{"role": "user", "content": "Say hello"}]


def test_attachment_sent_before_prompt():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return ok_response()

    client = create_client(handler)
    client.generate("Check this", attachment=Attachment(b"%PDF", "application/pdf"))

    content = seen["body"]["messages"][0]["content"]
    assert content[0]["type"] == "document"
    assert base64.b64decode(content[0]["source"]["data"]) == b"%PDF"
    assert content[1] == {"type": "text", "text": "Check this"}


@pytest.mark.parametrize("status,kind", [
    (401, "invalid_api_key"),
    (429, "rate_limited"),
    (500, "api_error"),
])
def test_http_errors(status, kind):
    client = create_client(lambda request: httpx.Response(status, json={"error": {"message": "nope"}}))

    with pytest.raises(TextGenerationError) as exc:
        client.generate("hi")

    assert exc.value.kind == kind
    assert exc.value.status_code == status


def test_api_error_message_passed_through():
    client = create_client(lambda request: httpx.Response(400, json={"error": {"message": "prompt too long"}}))

    with pytest.raises(TextGenerationError, match="prompt too long"):
        client.generate("hi")


def test_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TextGenerationError) as exc:
        create_client(handler).generate("hi", timeout=1)

    assert exc.value.kind == "timeout"


def test_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TextGenerationError) as exc:
        create_client(handler).generate("hi")

    assert exc.value.kind == "network"


def test_missing_text_content():
    client = create_client(lambda request: httpx.Response(200, json={"content": []}))

    with pytest.raises(TextGenerationError) as exc:
        client.generate("hi")

    assert exc.value.kind == "invalid_response"


def test_unconfigured_client_makes_no_request():
    calls = []

    def handler(request):
        calls.append(request)
        return ok_response()

    client = create_client(handler, api_key="")

    assert not client.is_configured()
    with pytest.raises(TextGenerationError) as exc:
        client.generate("hi")
    assert exc.value.kind == "not_configured"
    assert calls == []


def test_attachment_block_types():
    assert attachment_block(Attachment(b"img", "image/png"))["type"] == "image"

    with pytest.raises(TextGenerationError) as exc:
        attachment_block(Attachment(b"text", "text/plain"))
    assert exc.value.kind == "attachment_rejected"

    with pytest.raises(TextGenerationError):
        attachment_block(Attachment(b"12345", "application/pdf"), max_bytes=4)


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING ANTHROPIC CLIENT")
    print("="*60 + "\n")

    sys.exit(pytest.main([__file__, "-v"]))
