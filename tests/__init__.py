"""
Test suite for chatrelay.

Demonstrates testing patterns for Pydantic-based architectures:
- Domain logic tests (not validation tests)
- Business rule enforcement (ranking, undo, rollback)
- Integration tests for the HTTP surface
"""
