"""
PayAdvance - API Routers
"""
