"""
API utilities
"""
