"""auth/ -- Authentication and authorization package for BlueInk.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, audit/ or profiles/.
api/ imports from auth/, not the other way around.
"""
