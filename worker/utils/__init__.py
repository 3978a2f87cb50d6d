"""
Worker utilities
"""
