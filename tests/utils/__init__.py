"""
Test utilities for the Live Photo service
"""
from .helpers import FakeClock, assert_error_response, create_tables, parse_sse, write_test_video

__all__ = [
    "FakeClock",
    "assert_error_response",
    "create_tables",
    "parse_sse",
    "write_test_video",
]
