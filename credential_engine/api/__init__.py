"""
API Package.

REST adapter over the lifecycle engine.
"""
