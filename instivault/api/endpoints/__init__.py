"""
API endpoints.
"""
