"""
Listings service application.
"""
