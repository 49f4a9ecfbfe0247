"""
FormSync: real-time collaborative form filling over per-group sharing codes.
"""

__version__ = "1.0.0"
