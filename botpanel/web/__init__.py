"""
Web application package for the bot panel.

This package contains the ASGI application exposing the supervisor over HTTP,
the observer WebSocket stream, and the Hypercorn runner that serves them.
"""
