"""auth/ -- Credential core for TaskFlow Auth.

Password hashing, single-use tokens, session tokens, the identity store and
the authentication/authorization gates.

Layer rule: auth/ imports only core/ + stdlib + third-party libraries.
It does NOT import from api/ or mailer/.
api/ imports from auth/, not the other way around.
"""
