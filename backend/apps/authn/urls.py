"""
Authentication URL routes.
"""
from django.urls import path

from . import views

urlpatterns = [
    path('login', views.login, name='auth-login'),
    path('logout', views.logout, name='auth-logout'),
    path('status', views.status, name='auth-status'),
    path('change-password', views.change_password, name='auth-change-password'),
]
