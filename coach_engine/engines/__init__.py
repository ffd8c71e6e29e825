"""
Engines - deterministic policy components.
"""
