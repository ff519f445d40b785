"""
ASGI config for DocuChat backend.

Served by daphne; every API view is an async view, so streamed answers
run on the event loop and are cancelled when the client disconnects.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

application = get_asgi_application()
