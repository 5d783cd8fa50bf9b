"""auth/ -- Authentication, session, and RBAC core for Gatehouse.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, cache/, core/, or mail/.
api/ and main.py import from auth/, not the other way around. The key-value
backend and the mailer are injected into AuthService by the application edge.
"""
