"""users/ -- Administrative user and role management for CareGate.

Layer rule: users/ imports from auth/ (store, hasher, errors, validation)
and never from api/. api/ imports from users/, not the other way around.
"""
