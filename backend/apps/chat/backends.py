"""
Inference backend abstraction layer.

Provides one streaming interface over the supported LLM providers:
- Ollama (local inference, NDJSON stream)
- Cohere (cloud, single JSON payload)
- Gemini API (cloud, server-sent events)
- Together AI (cloud, OpenAI-compatible server-sent events)

``send()`` issues the request and checks the status eagerly, so a failing
backend surfaces as a BackendError before any text is produced. It then
returns a lazy, single-pass iterator of text fragments. Closing the
iterator closes the outbound connection.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx
from django.conf import settings

from apps.chat.errors import BackendError, ConfigurationError, StreamReadError
from apps.chat.streaming import Frame, iter_ndjson_frames, iter_sse_frames, relay

logger = logging.getLogger(__name__)

# Values shipped in .env.example, e.g. "your_cohere_api_key_here"
PLACEHOLDER_KEY_PATTERN = re.compile(r'^your_.*_here$', re.IGNORECASE)

MODE_LOCAL = "local"
MODE_CLOUD = "cloud"


@dataclass
class ChatMessage:
    """A message in a chat conversation."""
    role: str  # "user" or "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


def is_placeholder_key(value: Optional[str]) -> bool:
    """True when a credential is blank or still the template placeholder."""
    if not value or not value.strip():
        return True
    return bool(PLACEHOLDER_KEY_PATTERN.match(value.strip()))


def resolve_api_key(explicit: Optional[str], setting_name: str) -> str:
    """
    Resolve a cloud credential.

    The explicit per-request key wins, then the environment-backed setting.
    Placeholder values count as absent.

    Raises:
        ConfigurationError: If neither source holds a usable key
    """
    for candidate in (explicit, getattr(settings, setting_name, '')):
        if not is_placeholder_key(candidate):
            return candidate.strip()
    raise ConfigurationError(setting_name)


def _error_message(response: httpx.Response, default: str) -> str:
    """Best-effort error message from a vendor error body."""
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str) and error:
            return error
        if data.get("message"):
            return data["message"]
    return default


class InferenceBackend(ABC):
    """Abstract base class for inference backends."""

    name = "backend"

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = getattr(settings, 'LLM_TIMEOUT', 600)
        self.temperature = getattr(settings, 'LLM_TEMPERATURE', 0.7)
        self.max_tokens = getattr(settings, 'LLM_MAX_TOKENS', 4096)
        # Injected in tests; None means the default HTTP transport
        self.transport = transport

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""
        pass

    @abstractmethod
    def build_request(self, conversation: Sequence[ChatMessage], system_prompt: str) -> Dict[str, Any]:
        """Return httpx request arguments: method, url, json and headers."""
        pass

    @abstractmethod
    def iter_fragments(self, response: httpx.Response) -> Iterator[str]:
        """Yield text fragments from a successful response."""
        pass

    def connection_error_message(self) -> str:
        return f"Could not connect to {self.name}"

    def send(self, conversation: Sequence[ChatMessage], system_prompt: str) -> Iterator[str]:
        """
        Send the conversation and return its reply as a fragment sequence.

        Args:
            conversation: Prior turns plus the new user message, oldest first
            system_prompt: Assembled system prompt

        Returns:
            FragmentStream yielding text in generation order

        Raises:
            BackendError: If the backend cannot be reached or answers
                with a non-2xx status
        """
        request_args = self.build_request(conversation, system_prompt)
        logger.info(
            f"Calling {self.name}: model={self.model_name}, "
            f"turns={len(conversation)}, prompt={len(system_prompt)} chars"
        )

        client = httpx.Client(timeout=float(self.timeout), transport=self.transport)
        try:
            request = client.build_request(**request_args)
            response = client.send(request, stream=True)
        except httpx.TimeoutException:
            client.close()
            logger.error(f"{self.name} request timed out")
            raise BackendError(f"{self.name} timed out", backend=self.name)
        except httpx.RequestError as e:
            client.close()
            logger.error(f"{self.name} connection error: {e}")
            raise BackendError(self.connection_error_message(), backend=self.name)

        if not response.is_success:
            try:
                response.read()
                message = _error_message(response, f"{self.name} error: {response.status_code}")
            except httpx.HTTPError:
                message = f"{self.name} error: {response.status_code}"
            finally:
                response.close()
                client.close()
            logger.error(f"{self.name} HTTP error {response.status_code}: {message}")
            raise BackendError(message, status=response.status_code, backend=self.name)

        return FragmentStream(self.iter_fragments(response), response, client, self.name)


class FragmentStream:
    """
    Single-pass iterator over a backend reply.

    Owns the open response and client. They are released when the
    fragments run out, when reading fails, or when close() is called
    (Django calls it when the client disconnects).
    """

    def __init__(self, fragments: Iterator[str], response: httpx.Response, client: httpx.Client, backend: str):
        self._fragments = fragments
        self._response = response
        self._client = client
        self.backend = backend
        self.closed = False

    def __iter__(self) -> "FragmentStream":
        return self

    def __next__(self) -> str:
        if self.closed:
            raise StopIteration
        try:
            return next(self._fragments)
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        close_fragments = getattr(self._fragments, 'close', None)
        if close_fragments is not None:
            close_fragments()
        self._response.close()
        self._client.close()
        logger.debug(f"{self.backend} stream closed")


class OllamaBackend(InferenceBackend):
    """Local Ollama inference, streamed as newline-delimited JSON."""

    name = "Ollama"

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        super().__init__(transport)
        self.base_url = getattr(settings, 'OLLAMA_BASE_URL', 'http://localhost:11434').rstrip('/')
        self.model = getattr(settings, 'OLLAMA_CHAT_MODEL', 'llama3')

    @property
    def model_name(self) -> str:
        return self.model

    def connection_error_message(self) -> str:
        return f"Could not connect to Ollama at {self.base_url}. Make sure Ollama is running locally."

    def build_request(self, conversation, system_prompt):
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(
            {"role": "user" if msg.role == "user" else "assistant", "content": msg.content}
            for msg in conversation
        )
        return {
            "method": "POST",
            "url": f"{self.base_url}/api/chat",
            "json": {
                "model": self.model,
                "messages": messages,
                "stream": True,
                "options": {
                    "temperature": self.temperature,
                },
            },
        }

    @staticmethod
    def extract_delta(frame: Frame) -> Optional[str]:
        message = frame.get("message")
        if isinstance(message, dict):
            return message.get("content") or None
        return None

    @staticmethod
    def decode(lines):
        # The frame with done=true is the last one
        for frame in iter_ndjson_frames(lines):
            yield frame
            if frame.get("done") is True:
                return

    def iter_fragments(self, response):
        return relay(response.iter_lines(), self.decode, self.extract_delta, backend=self.name)


class CohereBackend(InferenceBackend):
    """Cohere chat API, non-streaming: the whole reply is one fragment."""

    name = "Cohere"

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.api_key = resolve_api_key(api_key, 'COHERE_API_KEY')
        super().__init__(transport)
        self.url = getattr(settings, 'COHERE_API_URL', 'https://api.cohere.ai/v1/chat')
        self.model = getattr(settings, 'COHERE_MODEL', 'command-a-03-2025')

    @property
    def model_name(self) -> str:
        return self.model

    def build_request(self, conversation, system_prompt):
        # Cohere takes the new message separately from the history
        last_message = conversation[-1].content if conversation else ""
        chat_history = [
            {"role": "USER" if msg.role == "user" else "CHATBOT", "message": msg.content}
            for msg in conversation[:-1]
        ]

        body: Dict[str, Any] = {
            "model": self.model,
            "message": last_message,
            "preamble": system_prompt,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if chat_history:
            body["chat_history"] = chat_history

        return {
            "method": "POST",
            "url": self.url,
            "json": body,
            "headers": {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        }

    def iter_fragments(self, response):
        try:
            response.read()
            data = response.json()
        except httpx.TransportError as e:
            logger.error(f"Cohere response read failed: {e}")
            raise StreamReadError(f"Stream interrupted: {e}") from e
        except ValueError:
            raise BackendError("Invalid response from Cohere", backend=self.name)

        content = data.get("text", "") if isinstance(data, dict) else ""
        logger.info(f"Cohere response: {len(content)} chars")
        yield content


class GeminiBackend(InferenceBackend):
    """Google Gemini API, streamed as server-sent events."""

    name = "Gemini"

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.api_key = resolve_api_key(api_key, 'GEMINI_API_KEY')
        super().__init__(transport)
        self.base_url = getattr(settings, 'GEMINI_BASE_URL', 'https://generativelanguage.googleapis.com/v1beta')
        self.model = getattr(settings, 'GEMINI_MODEL', 'gemini-1.5-flash')

    @property
    def model_name(self) -> str:
        return self.model

    def build_request(self, conversation, system_prompt):
        # Gemini uses "contents" with "parts"; assistant turns are "model"
        contents = [
            {"role": "model" if msg.role == "assistant" else "user", "parts": [{"text": msg.content}]}
            for msg in conversation
        ]
        return {
            "method": "POST",
            "url": f"{self.base_url}/models/{self.model}:streamGenerateContent",
            "params": {"alt": "sse", "key": self.api_key},
            "json": {
                "contents": contents,
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "generationConfig": {
                    "temperature": self.temperature,
                    "maxOutputTokens": self.max_tokens,
                },
            },
            "headers": {"Content-Type": "application/json"},
        }

    @staticmethod
    def extract_delta(frame: Frame) -> Optional[str]:
        # Format: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
        candidates = frame.get("candidates") or []
        if not candidates:
            return None
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts) or None

    def iter_fragments(self, response):
        return relay(response.iter_lines(), iter_sse_frames, self.extract_delta, backend=self.name)


class TogetherBackend(InferenceBackend):
    """Together AI, OpenAI-compatible chat completions with stream=true."""

    name = "Together AI"

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.api_key = resolve_api_key(api_key, 'TOGETHER_API_KEY')
        super().__init__(transport)
        self.base_url = getattr(settings, 'TOGETHER_BASE_URL', 'https://api.together.xyz/v1').rstrip('/')
        self.model = getattr(settings, 'TOGETHER_MODEL', 'meta-llama/Llama-3.3-70B-Instruct-Turbo')

    @property
    def model_name(self) -> str:
        return self.model

    def build_request(self, conversation, system_prompt):
        messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
        messages.extend(msg.to_dict() for msg in conversation)
        return {
            "method": "POST",
            "url": f"{self.base_url}/chat/completions",
            "json": {
                "model": self.model,
                "messages": messages,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
                "stream": True,
            },
            "headers": {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        }

    @staticmethod
    def extract_delta(frame: Frame) -> Optional[str]:
        choices = frame.get("choices") or []
        if not choices:
            return None
        return (choices[0].get("delta") or {}).get("content") or None

    def iter_fragments(self, response):
        return relay(response.iter_lines(), iter_sse_frames, self.extract_delta, backend=self.name)


# =============================================================================
# Backend Factory
# =============================================================================

CLOUD_BACKENDS = {
    'cohere': CohereBackend,
    'gemini': GeminiBackend,
    'together': TogetherBackend,
}


def get_backend(mode: str = MODE_CLOUD, api_key: Optional[str] = None) -> InferenceBackend:
    """
    Build the inference backend for a request.

    A new instance per request; nothing is cached between requests.

    Args:
        mode: "local" for Ollama, "cloud" for CLOUD_PROVIDER
        api_key: Optional per-request cloud credential

    Raises:
        ConfigurationError: If the cloud credential is missing
        ValueError: If CLOUD_PROVIDER names an unknown provider
    """
    if mode == MODE_LOCAL:
        logger.info("Using Ollama for inference")
        return OllamaBackend()

    provider = getattr(settings, 'CLOUD_PROVIDER', 'cohere').lower()
    backend_class = CLOUD_BACKENDS.get(provider)
    if backend_class is None:
        raise ValueError(f"Unknown CLOUD_PROVIDER: {provider}")

    logger.info(f"Using {backend_class.name} for inference")
    return backend_class(api_key=api_key)
