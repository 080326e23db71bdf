"""
Tests for the inference backends.

HTTP is faked with httpx.MockTransport; no test touches the network.
"""
import json
from unittest.mock import patch

import httpx
import pytest
from django.test import override_settings

from apps.chat.backends import (
    ChatMessage,
    CohereBackend,
    GeminiBackend,
    OllamaBackend,
    TogetherBackend,
    get_backend,
    is_placeholder_key,
    resolve_api_key,
)
from apps.chat.errors import BackendError, ConfigurationError, StreamReadError


CONVERSATION = [
    ChatMessage(role="user", content="What is consideration?"),
    ChatMessage(role="assistant", content="Something of value exchanged."),
    ChatMessage(role="user", content="Must it be adequate?"),
]

SYSTEM_PROMPT = "You are a legal research assistant."


class Recorder:
    """MockTransport handler that records requests and returns a canned response."""

    def __init__(self, response):
        self.response = response
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    @property
    def body(self):
        return json.loads(self.requests[-1].content)


class BrokenStream(httpx.SyncByteStream):
    """Response body that drops the connection after some chunks."""

    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    def __iter__(self):
        yield from self.chunks
        raise httpx.ReadError("connection reset by peer")

    def close(self):
        self.closed = True


class TrackedStream(httpx.SyncByteStream):
    """Response body that records whether it was closed."""

    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    def __iter__(self):
        yield from self.chunks

    def close(self):
        self.closed = True


def sse(*payloads):
    return "".join(f"data: {p}\n\n" for p in payloads).encode()


# ============================================================================
# Credential Tests
# ============================================================================

class TestCredentials:
    """Tests for API key resolution."""

    @pytest.mark.parametrize("value", [None, "", "   ", "your_cohere_api_key_here", "YOUR_KEY_HERE"])
    def test_placeholder_values(self, value):
        assert is_placeholder_key(value)

    def test_real_key_is_not_placeholder(self):
        assert not is_placeholder_key("co-1234567890")

    @override_settings(COHERE_API_KEY="from-env")
    def test_explicit_key_wins(self):
        assert resolve_api_key("per-request", "COHERE_API_KEY") == "per-request"

    @override_settings(COHERE_API_KEY="from-env")
    def test_falls_back_to_setting(self):
        assert resolve_api_key(None, "COHERE_API_KEY") == "from-env"

    @override_settings(COHERE_API_KEY="your_cohere_api_key_here")
    def test_placeholder_setting_is_missing(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_api_key("", "COHERE_API_KEY")

        assert "COHERE_API_KEY" in str(exc_info.value)
        assert exc_info.value.credential == "COHERE_API_KEY"

    @pytest.mark.parametrize("backend_class, setting", [
        (CohereBackend, "COHERE_API_KEY"),
        (GeminiBackend, "GEMINI_API_KEY"),
        (TogetherBackend, "TOGETHER_API_KEY"),
    ])
    def test_missing_key_makes_no_network_call(self, backend_class, setting):
        """A placeholder key fails before any HTTP client is created."""
        with override_settings(**{setting: "your_api_key_here"}):
            with patch("apps.chat.backends.httpx.Client") as mock_client:
                with pytest.raises(ConfigurationError):
                    backend_class()

        mock_client.assert_not_called()


# ============================================================================
# Backend Tests
# ============================================================================

class TestCohereBackend:
    """Cohere replies in one JSON payload."""

    @pytest.fixture(autouse=True)
    def cohere_settings(self):
        with override_settings(COHERE_API_KEY="test-key", COHERE_API_URL="https://cohere.test/v1/chat"):
            yield

    def test_single_fragment(self):
        recorder = Recorder(httpx.Response(200, json={"text": "Not necessarily."}))
        backend = CohereBackend(transport=httpx.MockTransport(recorder))

        fragments = list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        assert fragments == ["Not necessarily."]

    def test_request_shape(self):
        """The new message is sent apart from the history."""
        recorder = Recorder(httpx.Response(200, json={"text": "ok"}))
        backend = CohereBackend(transport=httpx.MockTransport(recorder))

        list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        request = recorder.requests[0]
        assert str(request.url) == "https://cohere.test/v1/chat"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = recorder.body
        assert body["message"] == "Must it be adequate?"
        assert body["preamble"] == SYSTEM_PROMPT
        assert body["chat_history"] == [
            {"role": "USER", "message": "What is consideration?"},
            {"role": "CHATBOT", "message": "Something of value exchanged."},
        ]

    def test_per_request_key_used(self):
        recorder = Recorder(httpx.Response(200, json={"text": "ok"}))
        backend = CohereBackend(api_key="override", transport=httpx.MockTransport(recorder))

        list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        assert recorder.requests[0].headers["Authorization"] == "Bearer override"

    def test_invalid_json_body(self):
        recorder = Recorder(httpx.Response(200, content=b"<html>"))
        backend = CohereBackend(transport=httpx.MockTransport(recorder))

        with pytest.raises(BackendError):
            list(backend.send(CONVERSATION, SYSTEM_PROMPT))


class TestOllamaBackend:
    """Ollama streams one JSON object per line."""

    @pytest.fixture(autouse=True)
    def ollama_settings(self):
        with override_settings(OLLAMA_BASE_URL="http://ollama.test:11434", OLLAMA_CHAT_MODEL="llama3"):
            yield

    def test_fragments_in_order(self):
        body = (
            b'{"message": {"role": "assistant", "content": "Not "}, "done": false}\n'
            b'{"message": {"role": "assistant", "content": "necess"}, "done": false}\n'
            b'{"message": {"role": "assistant", "content": "arily."}, "done": false}\n'
            b'{"done": true}\n'
        )
        recorder = Recorder(httpx.Response(200, content=body))
        backend = OllamaBackend(transport=httpx.MockTransport(recorder))

        fragments = list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        assert fragments == ["Not ", "necess", "arily."]
        assert "".join(fragments) == "Not necessarily."

    def test_done_frame_ends_stream(self):
        body = b'{"message": {"content": "end"}}\n{"done": true}\n{"message": {"content": "extra"}}\n'
        recorder = Recorder(httpx.Response(200, content=body))
        backend = OllamaBackend(transport=httpx.MockTransport(recorder))

        assert list(backend.send(CONVERSATION, SYSTEM_PROMPT)) == ["end"]

    def test_request_shape(self):
        recorder = Recorder(httpx.Response(200, content=b'{"done": true}\n'))
        backend = OllamaBackend(transport=httpx.MockTransport(recorder))

        list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        assert str(recorder.requests[0].url) == "http://ollama.test:11434/api/chat"
        body = recorder.body
        assert body["stream"] is True
        assert body["model"] == "llama3"
        assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert [m["role"] for m in body["messages"][1:]] == ["user", "assistant", "user"]

    def test_connection_failure_names_ollama(self):
        """An unreachable local server gives a message pointing at Ollama."""
        recorder = Recorder(httpx.ConnectError("connection refused"))
        backend = OllamaBackend(transport=httpx.MockTransport(recorder))

        with pytest.raises(BackendError) as exc_info:
            backend.send(CONVERSATION, SYSTEM_PROMPT)

        assert "Could not connect to Ollama at http://ollama.test:11434" in exc_info.value.message
        assert exc_info.value.status is None

    def test_timeout(self):
        recorder = Recorder(httpx.ConnectTimeout("timed out"))
        backend = OllamaBackend(transport=httpx.MockTransport(recorder))

        with pytest.raises(BackendError) as exc_info:
            backend.send(CONVERSATION, SYSTEM_PROMPT)

        assert "timed out" in exc_info.value.message

    def test_mid_stream_failure(self):
        """Text before the failure is delivered, then StreamReadError."""
        stream = BrokenStream([b'{"message": {"content": "Partial"}}\n'])
        recorder = Recorder(httpx.Response(200, stream=stream))
        backend = OllamaBackend(transport=httpx.MockTransport(recorder))

        fragments = backend.send(CONVERSATION, SYSTEM_PROMPT)

        assert next(fragments) == "Partial"
        with pytest.raises(StreamReadError):
            next(fragments)
        assert fragments.closed
        assert stream.closed

    def test_error_frame_mid_stream(self):
        """An {"error": ...} line after some text raises BackendError."""
        body = b'{"message": {"content": "Hel"}, "done": false}\n{"error": "model runner crashed"}\n'
        recorder = Recorder(httpx.Response(200, content=body))
        backend = OllamaBackend(transport=httpx.MockTransport(recorder))

        fragments = backend.send(CONVERSATION, SYSTEM_PROMPT)

        assert next(fragments) == "Hel"
        with pytest.raises(BackendError) as exc_info:
            next(fragments)
        assert exc_info.value.message == "model runner crashed"
        assert exc_info.value.backend == "Ollama"
        assert fragments.closed


class TestGeminiBackend:
    """Gemini streams server-sent events."""

    @pytest.fixture(autouse=True)
    def gemini_settings(self):
        with override_settings(
            GEMINI_API_KEY="gem-key",
            GEMINI_BASE_URL="https://gemini.test/v1beta",
            GEMINI_MODEL="gemini-1.5-flash",
        ):
            yield

    def test_fragments_in_order(self):
        body = sse(
            json.dumps({"candidates": [{"content": {"parts": [{"text": "Not "}]}}]}),
            json.dumps({"candidates": [{"content": {"parts": [{"text": "necessarily."}]}}]}),
        )
        recorder = Recorder(httpx.Response(200, content=body))
        backend = GeminiBackend(transport=httpx.MockTransport(recorder))

        assert list(backend.send(CONVERSATION, SYSTEM_PROMPT)) == ["Not ", "necessarily."]

    def test_request_shape(self):
        recorder = Recorder(httpx.Response(200, content=b""))
        backend = GeminiBackend(transport=httpx.MockTransport(recorder))

        list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        request = recorder.requests[0]
        assert request.url.path == "/v1beta/models/gemini-1.5-flash:streamGenerateContent"
        assert request.url.params["alt"] == "sse"
        assert request.url.params["key"] == "gem-key"
        body = recorder.body
        assert body["systemInstruction"] == {"parts": [{"text": SYSTEM_PROMPT}]}
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]

    def test_error_event(self):
        body = sse(
            json.dumps({"candidates": [{"content": {"parts": [{"text": "Partial"}]}}]}),
            json.dumps({"error": {"code": 503, "message": "The model is overloaded.", "status": "UNAVAILABLE"}}),
        )
        recorder = Recorder(httpx.Response(200, content=body))
        backend = GeminiBackend(transport=httpx.MockTransport(recorder))

        fragments = backend.send(CONVERSATION, SYSTEM_PROMPT)

        assert next(fragments) == "Partial"
        with pytest.raises(BackendError) as exc_info:
            next(fragments)
        assert exc_info.value.message == "The model is overloaded."


class TestTogetherBackend:
    """Together streams OpenAI-style SSE chunks ending in [DONE]."""

    @pytest.fixture(autouse=True)
    def together_settings(self):
        with override_settings(TOGETHER_API_KEY="tg-key", TOGETHER_BASE_URL="https://together.test/v1"):
            yield

    def test_sentinel_never_yielded(self):
        body = sse(
            json.dumps({"choices": [{"delta": {"role": "assistant"}}]}),
            json.dumps({"choices": [{"delta": {"content": "Not "}}]}),
            json.dumps({"choices": [{"delta": {"content": "necessarily."}}]}),
            "[DONE]",
        )
        recorder = Recorder(httpx.Response(200, content=body))
        backend = TogetherBackend(transport=httpx.MockTransport(recorder))

        fragments = list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        assert fragments == ["Not ", "necessarily."]
        assert all("[DONE]" not in f for f in fragments)

    def test_error_event_before_done(self):
        """An error event is raised, not dropped as a control frame."""
        body = sse(json.dumps({"error": {"message": "rate limited mid-stream"}}), "[DONE]")
        recorder = Recorder(httpx.Response(200, content=body))
        backend = TogetherBackend(transport=httpx.MockTransport(recorder))

        with pytest.raises(BackendError) as exc_info:
            list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        assert exc_info.value.message == "rate limited mid-stream"
        assert exc_info.value.backend == "Together AI"

    def test_request_shape(self):
        recorder = Recorder(httpx.Response(200, content=sse("[DONE]")))
        backend = TogetherBackend(transport=httpx.MockTransport(recorder))

        list(backend.send(CONVERSATION, SYSTEM_PROMPT))

        request = recorder.requests[0]
        assert str(request.url) == "https://together.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer tg-key"
        assert recorder.body["stream"] is True
        assert recorder.body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}

    def test_http_error_status(self):
        """A non-2xx reply fails before any text, carrying the status."""
        recorder = Recorder(httpx.Response(401, json={"error": {"message": "Invalid API key"}}))
        backend = TogetherBackend(transport=httpx.MockTransport(recorder))

        with pytest.raises(BackendError) as exc_info:
            backend.send(CONVERSATION, SYSTEM_PROMPT)

        assert exc_info.value.status == 401
        assert exc_info.value.message == "Invalid API key"

    def test_http_error_without_json_body(self):
        recorder = Recorder(httpx.Response(503, content=b"Service Unavailable"))
        backend = TogetherBackend(transport=httpx.MockTransport(recorder))

        with pytest.raises(BackendError) as exc_info:
            backend.send(CONVERSATION, SYSTEM_PROMPT)

        assert exc_info.value.status == 503
        assert "503" in exc_info.value.message

    def test_close_releases_connection(self):
        """Closing the fragment stream early closes the response body."""
        stream = TrackedStream([sse(json.dumps({"choices": [{"delta": {"content": "a"}}]}))])
        recorder = Recorder(httpx.Response(200, stream=stream))
        backend = TogetherBackend(transport=httpx.MockTransport(recorder))

        fragments = backend.send(CONVERSATION, SYSTEM_PROMPT)
        fragments.close()

        assert stream.closed
        assert fragments.closed
        assert list(fragments) == []


# ============================================================================
# Factory Tests
# ============================================================================

class TestGetBackend:
    """Tests for get_backend."""

    def test_local_mode_is_ollama(self):
        assert isinstance(get_backend("local"), OllamaBackend)

    @pytest.mark.parametrize("provider, setting, backend_class", [
        ("cohere", "COHERE_API_KEY", CohereBackend),
        ("gemini", "GEMINI_API_KEY", GeminiBackend),
        ("together", "TOGETHER_API_KEY", TogetherBackend),
    ])
    def test_cloud_provider_selection(self, provider, setting, backend_class):
        with override_settings(CLOUD_PROVIDER=provider, **{setting: "real-key"}):
            assert isinstance(get_backend("cloud"), backend_class)

    @override_settings(CLOUD_PROVIDER="cohere", COHERE_API_KEY="")
    def test_per_request_key(self):
        backend = get_backend("cloud", api_key="per-request")

        assert backend.api_key == "per-request"

    @override_settings(CLOUD_PROVIDER="cohere", COHERE_API_KEY="")
    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            get_backend("cloud")

    @override_settings(CLOUD_PROVIDER="openai")
    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_backend("cloud")

    @override_settings(CLOUD_PROVIDER="cohere", COHERE_API_KEY="real-key")
    def test_new_instance_per_call(self):
        assert get_backend("cloud") is not get_backend("cloud")
