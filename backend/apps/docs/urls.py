"""
URL configuration for the docs app.
"""
from django.urls import path
from . import views

app_name = 'docs'

urlpatterns = [
    path('upload', views.upload_document, name='upload'),
    path('documents', views.list_documents, name='list'),
    path('documents/<uuid:document_id>', views.delete_document, name='delete'),
]
