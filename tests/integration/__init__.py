"""
Integration tests for the ordercore stores.

Every test here runs against each database backend via the parametrized
``store`` fixture:
- SQLite, using a file database under ``tmp_path`` with WAL enabled
- PostgreSQL, when ``ORDERCORE_TEST_POSTGRES_URL`` points at a server

Run only SQLite:
    pytest tests/integration/ -v -m sqlite

Run only PostgreSQL:
    ORDERCORE_TEST_POSTGRES_URL=postgresql+asyncpg://... pytest tests/integration/ -m postgres
"""
