"""
URL configuration for Legal Oracle backend.
"""
from django.urls import path, include
from django.http import JsonResponse


def health_check(request):
    """Simple health check endpoint for Docker healthcheck."""
    return JsonResponse({'status': 'ok'})


urlpatterns = [
    # Health check endpoint (no auth)
    path('api/health', health_check, name='health_check'),

    # API routes
    path('api/auth/', include('apps.authn.urls')),
    path('api/', include('apps.chat.urls')),
    path('api/', include('apps.history.urls')),
]
