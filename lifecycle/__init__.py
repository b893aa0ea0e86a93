"""
Event lifecycle engine components.
"""
