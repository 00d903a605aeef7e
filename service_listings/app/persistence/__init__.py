"""
Durable listing stores: the ListingStore contract, PostgreSQL and in-memory implementations.
"""
