"""
Test suite for the ATEK QuickBooks sync service.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_sku_matching_service.py -v
"""
