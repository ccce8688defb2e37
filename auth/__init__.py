"""auth/ -- Authentication, session and access-policy package for TaskBoard.

Layer rule: auth/ imports from core/ and cache/ plus third-party libraries.
It does NOT import from api/ or projects/.
api/ and projects/ import from auth/, not the other way around.
"""
