"""
ASGI entry point serving both HTTP and WebSocket traffic.

Protocols:
    http: Django views (REST API, admin, health check)
    websocket: ChatConsumer at ws/chat/, authenticated by JWT

Run with an ASGI server, e.g.:
    uvicorn config.asgi:application --host 0.0.0.0 --port 8000
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Must run before anything imports models
http_application = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from chat.middleware import JWTAuthMiddleware  # noqa: E402
from chat.routing import websocket_urlpatterns  # noqa: E402

websocket_application = AllowedHostsOriginValidator(
    JWTAuthMiddleware(URLRouter(websocket_urlpatterns))
)

application = ProtocolTypeRouter(
    {
        "http": http_application,
        "websocket": websocket_application,
    }
)
