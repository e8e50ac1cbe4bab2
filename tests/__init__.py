"""
Hospital Wait Monitor - Test Suite

This package contains all tests for the application.

Structure:
    unit/: Unit tests for individual components
    integration/: In-process tests of the health API and service startup

Running Tests:
    # Run all tests
    pytest

    # Run only unit tests
    pytest tests/unit

    # Run specific test file
    pytest tests/unit/test_orchestrator.py

    # Run with verbose output
    pytest -v
"""
