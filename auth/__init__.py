"""auth/ -- Authentication, sessions and CSRF protection for Nemesis.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, activity/, cache/ or uploads/.
api/ imports from auth/, not the other way around.
"""
