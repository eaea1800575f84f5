"""catalog/ -- Books, per-user libraries, and their persistence.

Layer rule: catalog/ may import from auth/ (the users table, Identity, the
access policy) and core/. It does NOT import from api/.
"""
