"""
PayAdvance - Services

Business logic for the salary advance lifecycle.
"""
