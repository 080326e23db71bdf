"""
Chat URL routing.
"""
from django.urls import path

from apps.chat.views import ChatView, CitationsView

urlpatterns = [
    path('chat', ChatView.as_view(), name='chat'),
    path('chat/citations', CitationsView.as_view(), name='chat-citations'),
]
