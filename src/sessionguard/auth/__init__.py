"""Authentication primitives.

Learn: Three leaf components the orchestrator composes:
1. password.py → bcrypt hashing/verification (off the event loop)
2. tokens.py   → refresh tokens as "<selector>.<verifier>"
3. jwt.py      → short-lived HS256 access tokens

dependencies.py wires them into FastAPI for the HTTP boundary.
"""
