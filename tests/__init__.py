"""
Tests Package - Luzzia Price Ingestion
======================================

Structure:
- unit/: Unit tests for individual components
- conftest.py: Shared fixtures, in-memory price store and test configuration
"""
