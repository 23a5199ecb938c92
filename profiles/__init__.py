"""profiles/ -- One-per-user profile records for BlueInk.

Layer rule: profiles/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, auth/ or audit/.
"""
