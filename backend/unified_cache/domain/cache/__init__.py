"""
Cache Domain Module

Domain-Driven Design implementation for the unified cache.
Contains entities, value objects, strategies, repository interfaces,
and domain services.
"""
