"""
VaultPilot - opportunity-ranking and capital-reallocation loop for a custodial yield vault.
"""

__version__ = "1.0.0"
