"""
Kernel - persistence models and the conversation store.
"""
