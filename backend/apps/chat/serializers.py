"""
Chat request schema.

The canonical body (version 2) is:

    {
        "version": 2,
        "messages": [{"role": "user", "content": "..."}],   // oldest first
        "files": [{"name": "a.pdf", "content": "data:...", "type": "application/pdf"}],
        "mode": "cloud",                                    // or "local"
        "apiKey": "..."                                     // optional
    }

Bodies without a version are version 1, the shape older clients send
(``message``, ``useLocal``, ``fileContexts``). They are migrated to
version 2 once, here, before validation.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings
from rest_framework import serializers

from apps.chat.backends import MODE_CLOUD, MODE_LOCAL, ChatMessage
from apps.docs.extractor import FileContext

CURRENT_VERSION = 2
SUPPORTED_VERSIONS = (1, 2)


class MessageSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=["user", "assistant"])
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)


class FileContextSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)
    type = serializers.CharField(required=False, allow_blank=True, default="")


class ChatRequestSerializer(serializers.Serializer):
    version = serializers.ChoiceField(choices=[CURRENT_VERSION])
    messages = MessageSerializer(many=True, allow_empty=False)
    files = FileContextSerializer(many=True, required=False, default=list)
    mode = serializers.ChoiceField(choices=[MODE_LOCAL, MODE_CLOUD], default=MODE_CLOUD)
    apiKey = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)

    def validate_messages(self, value):
        if value[-1]["role"] != "user":
            raise serializers.ValidationError("The last message must be from the user.")
        if not value[-1]["content"].strip():
            raise serializers.ValidationError("Message is required.")
        return value

    def validate_files(self, value):
        max_files = getattr(settings, 'MAX_FILES_PER_REQUEST', 20)
        if len(value) > max_files:
            raise serializers.ValidationError(f"At most {max_files} files per request.")
        return value


def migrate_v1(body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a version 1 body to version 2.

    ``message`` is the new user turn when present; any ``messages`` sent
    alongside it are kept as the history before it.
    """
    messages = body.get("messages") or []
    if not isinstance(messages, list):
        raise serializers.ValidationError({"messages": ["Expected a list of messages."]})

    message = body.get("message")
    if message is not None:
        if not isinstance(message, str):
            raise serializers.ValidationError({"message": ["Expected a string."]})
        messages = list(messages) + [{"role": "user", "content": message}]

    mode = body.get("mode")
    if mode is None:
        mode = MODE_LOCAL if body.get("useLocal") is True else MODE_CLOUD

    files = body.get("files")
    if files is None:
        files = body.get("fileContexts") or []

    return {
        "version": CURRENT_VERSION,
        "messages": messages,
        "files": files,
        "mode": mode,
        "apiKey": body.get("apiKey"),
    }


def migrate_request(body: Any) -> Dict[str, Any]:
    """Bring any supported request version up to the current schema."""
    if not isinstance(body, dict):
        raise serializers.ValidationError({"non_field_errors": ["Expected a JSON object."]})

    version = body.get("version", 1)
    if version not in SUPPORTED_VERSIONS or isinstance(version, bool):
        raise serializers.ValidationError({"version": [f"Unsupported request version: {version}"]})

    if version == 1:
        return migrate_v1(body)
    if "message" in body:
        raise serializers.ValidationError(
            {"message": ["Not accepted in version 2 requests; send the turn as the last entry of messages."]}
        )
    return body


@dataclass
class ChatRequest:
    """A validated chat request."""
    conversation: List[ChatMessage]
    files: List[FileContext] = field(default_factory=list)
    mode: str = MODE_CLOUD
    api_key: Optional[str] = None


def parse_chat_request(body: Any) -> ChatRequest:
    """
    Validate a decoded JSON body.

    Raises:
        serializers.ValidationError: If the body does not match any
            supported version of the schema
    """
    serializer = ChatRequestSerializer(data=migrate_request(body))
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    return ChatRequest(
        conversation=[ChatMessage(role=m["role"], content=m["content"]) for m in data["messages"]],
        files=[FileContext(name=f["name"], content=f["content"], type=f.get("type", "")) for f in data["files"]],
        mode=data["mode"],
        api_key=data.get("apiKey") or None,
    )
