"""
Company incorporation registration core: lifecycle state machine, secretary
period expiry/renewal, and lifecycle event propagation.
"""

__version__ = "1.0.0"
