"""
Unit Tests

Pure scheduling and scoring functions are tested directly; services run
against the in-memory repository with a pinned clock. Redis and the SQL
session are mocked.
"""
