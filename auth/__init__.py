"""auth/ -- Credentials, second factor, and session tokens for authgate.

Layer rule: auth/ imports only stdlib + third-party libraries at runtime.
It does NOT import from api/ or core/; cache/ appears only under
TYPE_CHECKING, since the store implementations are injected by api.main.
api/ and cache/ import from auth/, not the other way around.
"""
