"""
ui — FastAPI HTTP/WebSocket surface over the request gateway.
"""
