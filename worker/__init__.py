"""
Worker: frame extraction, composition and the processing task
"""
