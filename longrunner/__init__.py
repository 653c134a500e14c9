"""
Checkpointed batch runner and user mention indexer.
"""

__version__ = "0.1.0"
