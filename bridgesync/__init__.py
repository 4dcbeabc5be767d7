"""
bridgesync - Matrix <-> Discord room and user state synchronization.
"""

__version__ = "0.1.0"
