"""
Live Photo doodle cover API
"""
