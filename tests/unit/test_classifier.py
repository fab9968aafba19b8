import asyncio
import json
from datetime import datetime

import httpx
import pytest

from app.models.schemas import Classification, FileMetadata, RenameConfig, RenameMode
from domains.organizing.classifier import (
    ClassificationClient,
    OllamaBackend,
    OpenAIBackend,
    extract_openai_text,
    parse_classification,
)
from domains.organizing.errors import (
    InvalidResponseError,
    RejectedError,
    ResponseParseError,
    TransportError,
)

ANSWER = '{"folder": "invoices/2024", "reason": "an invoice", "suggestedName": null}'


def make_metadata(**overrides) -> FileMetadata:
    values = dict(
        name="scan_001.pdf",
        extension="pdf",
        size=2048,
        created=datetime(2024, 3, 15, 9, 30),
        modified=None,
    )
    values.update(overrides)
    return FileMetadata(**values)


def make_client(handler, backend=None, **kwargs):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    client = ClassificationClient(
        backend=backend or OllamaBackend(),
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
        **kwargs,
    )
    return client, delays


def classify(client, **kwargs):
    args = dict(
        metadata=make_metadata(),
        extracted_text="Invoice #42",
        existing_folders=["invoices"],
        user_prompt="Sort by document type",
    )
    args.update(kwargs)
    return asyncio.run(client.classify(**args))


def ollama_ok(text=ANSWER):
    return httpx.Response(200, json={"response": text})


def test_parse_tolerates_surrounding_commentary():
    result = parse_classification('Sure! {"folder":"x","reason":"y","suggestedName":null} Thanks!')

    assert result == Classification(folder="x", reason="y", suggested_name=None)


def test_parse_rejects_missing_json_and_empty_folder():
    with pytest.raises(ResponseParseError):
        parse_classification("I could not decide.")

    with pytest.raises(ResponseParseError):
        parse_classification('{"folder": "", "reason": "none"}')

    with pytest.raises(ResponseParseError):
        parse_classification('{"folder": "x", "reason": }')


def test_parse_reads_suggested_name():
    result = parse_classification('{"folder": "a", "reason": "", "suggestedName": "2024-03-15_invoice"}')

    assert result.suggested_name == "2024-03-15_invoice"
    assert result.reason == ""


def test_ollama_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return ollama_ok()

    client, _ = make_client(handler, backend=OllamaBackend(model="llama3.2", base_url="http://ollama:11434/"))
    result = classify(client)

    assert result.folder == "invoices/2024"
    assert seen["url"] == "http://ollama:11434/api/generate"
    assert seen["body"]["model"] == "llama3.2"
    assert seen["body"]["stream"] is False
    assert seen["body"]["options"] == {"temperature": 0.1, "num_predict": 256}
    assert "Invoice #42" in seen["body"]["prompt"]


def test_openai_request_shape_and_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": ANSWER}}]})

    client, _ = make_client(handler, backend=OpenAIBackend(api_key="sk-test"))
    result = classify(client)

    assert result.folder == "invoices/2024"
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4o-mini"
    assert seen["body"]["max_completion_tokens"] == 4096
    assert seen["body"]["messages"][0]["role"] == "user"


def test_openai_falls_back_to_output_shape():
    body = {
        "choices": [{"message": {"content": None}}],
        "output": [
            {"type": "reasoning", "content": []},
            {"type": "message", "content": [{"type": "output_text", "text": ANSWER}]},
        ],
    }

    assert extract_openai_text(body) == ANSWER
    assert extract_openai_text({"output": [{"content": [{"text": ""}]}]}) is None

    client, _ = make_client(lambda request: httpx.Response(200, json=body),
                            backend=OpenAIBackend(api_key="k"))
    assert classify(client).folder == "invoices/2024"


def test_retries_transient_failures_with_backoff():
    responses = iter([httpx.Response(503), httpx.Response(503), ollama_ok()])
    calls = []

    def handler(request):
        calls.append(request)
        return next(responses)

    client, delays = make_client(handler)
    result = classify(client)

    assert result.folder == "invoices/2024"
    assert len(calls) == 3
    assert delays == [2.0, 4.0]


def test_rejection_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, text="bad key")

    client, delays = make_client(handler, backend=OpenAIBackend(api_key="wrong"))

    with pytest.raises(RejectedError) as excinfo:
        classify(client)

    assert excinfo.value.status_code == 401
    assert len(calls) == 1
    assert delays == []


def test_parse_failure_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return ollama_ok("I think this is an invoice.")

    client, delays = make_client(handler)

    with pytest.raises(ResponseParseError):
        classify(client)

    assert len(calls) == 1
    assert delays == []


def test_exhausted_retries_raise_last_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, text=f"failure {len(calls)}")

    client, delays = make_client(handler, max_attempts=3, base_delay=0.5)

    with pytest.raises(TransportError) as excinfo:
        classify(client)

    assert len(calls) == 3
    assert delays == [0.5, 1.0]
    assert excinfo.value.status_code == 500
    assert "failure 3" in str(excinfo.value)


def test_timeout_is_retried():
    outcomes = iter(["timeout", "ok"])

    def handler(request):
        if next(outcomes) == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        return ollama_ok()

    client, delays = make_client(handler)

    assert classify(client).folder == "invoices/2024"
    assert delays == [2.0]


def test_missing_response_field_is_retried_as_invalid():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"done": True})

    client, delays = make_client(handler, max_attempts=2)

    with pytest.raises(InvalidResponseError):
        classify(client)

    assert len(calls) == 2
    assert delays == [2.0]


def test_prompt_truncates_text_and_marks_missing_folders():
    client = ClassificationClient(text_budget=10)

    prompt = client.build_prompt(
        make_metadata(),
        "abcdefghijklmnopqrstuvwxyz",
        [],
        "Keep receipts apart",
        RenameConfig.disabled(),
    )

    assert "abcdefghij...(truncated)" in prompt
    assert "klmnop" not in prompt
    assert "## Existing subfolders\nnone" in prompt
    assert "Created: 2024-03-15 09:30" in prompt
    assert "Modified: unknown" in prompt
    assert "Size: 2.0 KB" in prompt
    assert '"suggestedName": null}' in prompt
    assert "rename" not in prompt.lower()


def test_prompt_marks_empty_text():
    client = ClassificationClient()

    prompt = client.build_prompt(make_metadata(), "", ["a", "b"], "rules", RenameConfig.disabled())

    assert "(no text extracted)" in prompt
    assert "a, b" in prompt


def test_prompt_rename_modes():
    client = ClassificationClient()

    free_form = client.build_prompt(
        make_metadata(), "", [], "rules", RenameConfig(enabled=True, mode=RenameMode.FREE_FORM)
    )
    assert "YYYY-MM-DD" in free_form
    assert '"suggestedName": "proposed file name"' in free_form

    rule_based = client.build_prompt(
        make_metadata(), "", [], "rules",
        RenameConfig(enabled=True, mode=RenameMode.RULE_BASED, rule="<client>_<date>"),
    )
    assert "### Rename rule\n<client>_<date>" in rule_based
    assert "closest to its intent" in rule_based
