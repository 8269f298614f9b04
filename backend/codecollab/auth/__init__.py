"""Authentication module (session tokens).

Verifies the JWT session tokens issued by the user service:
- tokens: credential lookup (cookie, bearer header, query) and decoding
- handshake: WebSocket admission checks for project chat rooms
- dependencies: FastAPI dependencies for authenticated HTTP routes
"""
