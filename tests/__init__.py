"""
Test suite for Vendor Inventory Sync.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_decision_service.py -v
"""
