"""
API Tests

Exercise the FastAPI routers end to end through TestClient. The SQL
store is replaced with the in-memory repository via dependency overrides,
so no external services are needed.
"""
