"""auth/ -- Authentication and session lifecycle package for the gateway.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or audit/; the audit sink is passed in.
api/ imports from auth/, not the other way around.
"""
