"""
URL configuration for DocuChat backend.
"""
from django.urls import path, include

from apps.rag.health import healthz, readyz


urlpatterns = [
    # Health check endpoints (no auth)
    path('healthz', healthz, name='healthz'),
    path('readyz', readyz, name='readyz'),

    # API routes
    path('', include('apps.rag.urls')),
    path('', include('apps.docs.urls')),
    path('', include('apps.chats.urls')),
]
