"""auth/ -- Credential lifecycle: accounts, session tokens, password reset.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from vault/ or bootstrap. bootstrap.py is the only module
that wires auth/ and vault/ together.
"""
