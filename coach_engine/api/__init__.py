"""
HTTP adapter for the coaching engine.
"""
