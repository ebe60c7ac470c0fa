"""Alternative transports (stdio lives in server.py)."""
