"""
Chat API views.

Provides endpoints for:
- Chat (system prompt + conversation relayed to the backend, streamed back)
- Citation parsing of a finished reply
"""
import json
import logging
from typing import Iterator

from django.http import JsonResponse, StreamingHttpResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator
from rest_framework import serializers

from apps.authn.audit import audit_backend_error, audit_chat_request
from apps.authn.middleware import session_required
from apps.chat.backends import get_backend
from apps.chat.citations import parse_citations
from apps.chat.errors import BackendError, ConfigurationError, StreamReadError
from apps.chat.prompt import build_system_prompt
from apps.chat.serializers import parse_chat_request

logger = logging.getLogger(__name__)


def error_notice(message: str) -> str:
    """Trailer appended to a reply whose stream failed part way."""
    return f"\n\n[Error: {message}]"


def stream_reply(fragments: Iterator[str]) -> Iterator[str]:
    """
    Forward fragments to the client.

    Text already sent stays sent; a failure part way ends the body with an
    error notice. Closing this generator (client disconnect) closes the
    backend stream.
    """
    try:
        yield from fragments
    except (StreamReadError, BackendError) as e:
        logger.error(f"Chat stream failed: {e}")
        yield error_notice(str(e))
    except Exception as e:
        logger.exception(f"Streaming chat error: {e}")
        yield error_notice("Internal server error")
    finally:
        close = getattr(fragments, 'close', None)
        if close is not None:
            close()


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class ChatView(View):
    """
    POST /api/chat

    Request body (version 2):
        {
            "version": 2,
            "messages": [{"role": "user", "content": "What is consideration?"}],
            "files": [{"name": "contract.pdf", "content": "data:application/pdf;base64,...",
                       "type": "application/pdf"}],  // optional
            "mode": "cloud",                           // optional, "local" or "cloud"
            "apiKey": "..."                            // optional
        }

    Version 1 bodies ({"message": "...", "useLocal": true, ...}) are
    accepted and migrated.

    Response:
        200 text/plain, streamed as it is generated
        400 {"error": "..."} for a malformed body or missing API key
        500 {"error": "..."} when the backend fails
    """

    def post(self, request):
        try:
            body = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        try:
            chat_request = parse_chat_request(body)
        except serializers.ValidationError as e:
            return JsonResponse({"error": "Invalid request", "details": e.detail}, status=400)

        # Fails before any network call when the credential is missing
        try:
            backend = get_backend(chat_request.mode, chat_request.api_key)
        except ConfigurationError as e:
            logger.warning(f"Chat rejected: {e}")
            return JsonResponse({"error": str(e)}, status=400)
        except ValueError as e:
            logger.error(f"Backend configuration error: {e}")
            return JsonResponse({"error": str(e)}, status=500)

        system_prompt = build_system_prompt(chat_request.files)

        audit_chat_request(
            request,
            turns=len(chat_request.conversation),
            file_count=len(chat_request.files),
            mode=chat_request.mode,
            backend=backend.name,
        )

        try:
            fragments = backend.send(chat_request.conversation, system_prompt)
        except BackendError as e:
            audit_backend_error(request, backend=backend.name, status=e.status, error=e.message)
            return JsonResponse({"error": e.message}, status=500)

        response = StreamingHttpResponse(
            stream_reply(fragments),
            content_type='text/plain; charset=utf-8'
        )
        response['Cache-Control'] = 'no-cache'
        response['X-Accel-Buffering'] = 'no'  # Disable nginx buffering
        return response


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class CitationsView(View):
    """
    POST /api/chat/citations

    Request body:
        {"text": "Liability is limited (Source: Contracts Act, Page 12)."}

    Response:
        {
            "content": "Liability is limited.",
            "citations": [{"document": "Contracts Act", "page": 12}]
        }
    """

    def post(self, request):
        try:
            body = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        text = body.get("text") if isinstance(body, dict) else None
        if not isinstance(text, str):
            return JsonResponse({"error": "text must be a string"}, status=400)

        return JsonResponse(parse_citations(text).to_dict())
