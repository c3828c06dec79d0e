"""
HTTP and WebSocket service surface.
"""
