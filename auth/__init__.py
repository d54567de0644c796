"""auth/ -- Authentication, sessions, invites and authorization for the overtime tracker.

Layer rule: auth/ imports only stdlib + third-party libraries (and fastapi in
auth/dependencies.py, which is part of the dependency injection system).
It does NOT import from api/, web/, core/, or records/.
api/ and web/ import from auth/, not the other way around.
"""
