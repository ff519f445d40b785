"""
URL configuration for the chats app.
"""
from django.urls import path
from . import views

app_name = 'chats'

urlpatterns = [
    path('chat', views.create_chat, name='create'),
    path('chats', views.list_chats, name='list'),
    path('chats/<uuid:chat_id>', views.delete_chat, name='delete'),
    path('chats/<uuid:chat_id>/messages', views.chat_messages, name='messages'),
]
