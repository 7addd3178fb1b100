"""identity/ -- Identity & access core for userdir.

Password hashing, bearer tokens, self-or-admin access decisions and the
user lifecycle (active -> soft-deleted) live here.

Layer rule: identity/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ and main.py import from identity/, not
the other way around.
"""
