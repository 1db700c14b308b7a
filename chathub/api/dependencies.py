"""
FastAPI dependencies giving routes access to the application's hub.
"""

from starlette.requests import HTTPConnection

from chathub.services.hub import ChatHub


async def get_hub(connection: HTTPConnection) -> ChatHub:
    """
    Returns the hub created by the app factory.
    Works for both HTTP requests and WebSockets.
    """
    return connection.app.state.hub
