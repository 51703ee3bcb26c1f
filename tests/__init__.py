"""Test suite for doublet-refinery.

Test organization:
- fixtures/: Synthetic count generators and test utilities
- unit/: Unit tests for individual modules and end-to-end scenarios

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
