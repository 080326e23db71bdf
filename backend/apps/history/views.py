"""
Chat history API views.
"""
import json
import logging

from django.http import HttpResponse, JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from apps.authn.middleware import session_required
from apps.history.store import HistoryStorageError, get_store

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def _load_json(request):
    try:
        return json.loads(request.body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def storage_error_response(e: HistoryStorageError) -> JsonResponse:
    logger.error(f"History storage failure: {e}")
    return JsonResponse({"error": "Failed to save chat history"}, status=500)


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class SessionListView(View):
    """
    GET  /api/history/sessions   list sessions, most recent first
    POST /api/history/sessions   {"title": "..."} (optional) -> new session
    """

    def get(self, request):
        sessions = get_store().list_sessions()
        return JsonResponse({"sessions": [s.to_dict() for s in sessions]})

    def post(self, request):
        body = _load_json(request)
        if not isinstance(body, dict):
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        title = body.get("title")
        if title is not None and (not isinstance(title, str) or len(title) > MAX_TITLE_LENGTH):
            return JsonResponse(
                {"error": f"title must be a string of at most {MAX_TITLE_LENGTH} characters"},
                status=400
            )

        try:
            session = get_store().create_session(title or None)
        except HistoryStorageError as e:
            return storage_error_response(e)
        return JsonResponse(session.to_dict(), status=201)


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class ClearHistoryView(View):
    """DELETE /api/history removes every session."""

    def delete(self, request):
        get_store().clear()
        return JsonResponse({"success": True})


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class SessionDetailView(View):
    """
    GET    /api/history/sessions/<id>
    PATCH  /api/history/sessions/<id>   {"title": "..."}
    DELETE /api/history/sessions/<id>
    """

    def get(self, request, session_id):
        session = get_store().get_session(session_id)
        if session is None:
            return JsonResponse({"error": "Session not found"}, status=404)
        return JsonResponse(session.to_dict())

    def patch(self, request, session_id):
        body = _load_json(request)
        title = body.get("title") if isinstance(body, dict) else None
        if not isinstance(title, str) or not title.strip() or len(title) > MAX_TITLE_LENGTH:
            return JsonResponse(
                {"error": f"title must be a non-empty string of at most {MAX_TITLE_LENGTH} characters"},
                status=400
            )

        try:
            updated = get_store().rename_session(session_id, title.strip())
        except HistoryStorageError as e:
            return storage_error_response(e)
        if not updated:
            return JsonResponse({"error": "Session not found"}, status=404)
        return JsonResponse({"success": True})

    def delete(self, request, session_id):
        try:
            deleted = get_store().delete_session(session_id)
        except HistoryStorageError as e:
            return storage_error_response(e)
        if not deleted:
            return JsonResponse({"error": "Session not found"}, status=404)
        return JsonResponse({"success": True})


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class SessionMessagesView(View):
    """
    POST /api/history/sessions/<id>/messages

    Request body:
        {
            "role": "assistant",
            "content": "...",
            "citations": [{"document": "Contracts Act", "page": 12}]  // optional
        }
    """

    def post(self, request, session_id):
        body = _load_json(request)
        if not isinstance(body, dict):
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        role = body.get("role")
        content = body.get("content")
        citations = body.get("citations")

        if role not in ("user", "assistant"):
            return JsonResponse({"error": "role must be 'user' or 'assistant'"}, status=400)
        if not isinstance(content, str):
            return JsonResponse({"error": "content must be a string"}, status=400)
        if citations is not None and not isinstance(citations, list):
            return JsonResponse({"error": "citations must be a list"}, status=400)

        try:
            message = get_store().add_message(session_id, role, content, citations)
        except HistoryStorageError as e:
            return storage_error_response(e)
        if message is None:
            return JsonResponse({"error": "Session not found"}, status=404)
        return JsonResponse(message.to_dict(), status=201)


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class ExportView(View):
    """GET /api/history/export -> pretty-printed JSON download."""

    def get(self, request):
        response = HttpResponse(get_store().export_json(), content_type='application/json')
        response['Content-Disposition'] = 'attachment; filename="chat-history.json"'
        return response


@method_decorator(csrf_exempt, name='dispatch')
@method_decorator(session_required, name='dispatch')
class ImportView(View):
    """POST /api/history/import with a previous export as the body."""

    def post(self, request):
        try:
            data = request.body.decode('utf-8')
        except UnicodeDecodeError:
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        try:
            imported = get_store().import_json(data)
        except HistoryStorageError as e:
            return storage_error_response(e)
        if not imported:
            return JsonResponse({"error": "Invalid chat history export"}, status=400)
        return JsonResponse({"success": True})
