"""
StudyFlow Test Suite

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures: fixed clock, in-memory store, mocked Redis
    ├── unit/                # Scheduling, scoring, focus sessions, adapters
    └── integration/         # HTTP API through TestClient (in-memory store)

Running Tests:
    # Run all tests
    pytest backend/tests -v

    # Run only unit tests
    pytest backend/tests/unit -v

    # Run only API tests
    pytest -m integration -v
"""
