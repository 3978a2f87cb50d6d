"""
Media processors
"""
