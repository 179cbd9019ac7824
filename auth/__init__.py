"""auth/ -- Authentication and authorization package for CareGate.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, users/, or core/ -- configuration values are
passed in by whoever constructs the services.
api/ and users/ import from auth/, not the other way around.
"""
