"""
parley - conversation context, delta summarization and tool-call orchestration.
"""

__version__ = "0.1.0"
