"""auth/ -- Authentication and authorization package for Gatehouse.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config for Settings. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
