"""
Mindful Coach Engine

AI coaching safety & orchestration: crisis scoring, curriculum-grounded
replies and resilient model-vendor routing.
"""

__version__ = "1.0.0"
