"""audit/ -- Append-only request audit trail for BlueInk.

Layer rule: audit/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, auth/ or profiles/.
"""
