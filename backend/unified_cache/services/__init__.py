"""
Application services for the unified cache.
"""
