"""
ASGI config for Legal Oracle backend.

Streaming chat responses are plain HTTP; no WebSocket routing is needed.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

application = get_asgi_application()
