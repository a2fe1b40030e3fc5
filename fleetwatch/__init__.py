"""
FleetWatch - Alert management core for multi-tenant screen fleets.
"""

__version__ = "0.1.0"
