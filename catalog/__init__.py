"""catalog/ -- Products, reviews, and rating aggregation for GameVault.

Layer rule: catalog/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/. Reviews refer to users by ID.
"""
