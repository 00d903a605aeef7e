"""
Listings domain package.

- models: request models, column mappings and id validation.
- service: read-through queries and cache-invalidating mutations.
"""
