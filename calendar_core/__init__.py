"""
Shared foundation for the event lifecycle engine.
"""
