"""
Blob storage backends
"""
