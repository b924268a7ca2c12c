"""
Shortage Sync
Medication shortage and drug catalog sync engine
"""

__version__ = "1.0.0"
