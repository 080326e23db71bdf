"""
Chat history URL routing.
"""
from django.urls import path

from apps.history.views import (
    ClearHistoryView,
    ExportView,
    ImportView,
    SessionDetailView,
    SessionListView,
    SessionMessagesView,
)

urlpatterns = [
    path('history', ClearHistoryView.as_view(), name='history-clear'),
    path('history/sessions', SessionListView.as_view(), name='history-sessions'),
    path('history/sessions/<str:session_id>', SessionDetailView.as_view(), name='history-session'),
    path('history/sessions/<str:session_id>/messages', SessionMessagesView.as_view(), name='history-messages'),
    path('history/export', ExportView.as_view(), name='history-export'),
    path('history/import', ImportView.as_view(), name='history-import'),
]
