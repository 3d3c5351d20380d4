"""
Registration core: record store, lifecycle, expiry/renewal, events and refresh policy.
"""
