"""vault/ -- Authenticated encryption for third-party API keys at rest.

Layer rule: vault/ imports only stdlib, third-party libraries, and core/.
It does NOT import from auth/ or bootstrap.
"""
