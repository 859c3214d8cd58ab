"""
Test suite for dbmend.

- Unit tests for every component, run against a mocked connection
- Integration tests against a real Postgres, enabled by DBMEND_TEST_DATABASE_URL
"""
