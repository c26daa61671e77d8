"""
Infrastructure layer for the unified cache.

Contains the process-local and Redis backed store implementations.
"""
