"""auth/ -- Authentication core for the catalog.

Credential storage, password hashing, the verify function and the session
identity lifecycle (login, logout, serialize/deserialize).

Layer rule: auth/ imports only stdlib + third-party libraries and core/.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
