"""
RAG URL routing.
"""
from django.urls import path

from apps.rag import views

urlpatterns = [
    path('ask', views.ask, name='rag-ask'),
    path('ask/stream', views.ask_stream, name='rag-ask-stream'),
]
