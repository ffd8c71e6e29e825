"""
AI layer - prompt assembly, provider routing and citation extraction.
"""
