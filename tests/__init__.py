"""
Test suite for schemasync.

Unit tests run the reconciler against an in-memory transactional
executor and mock asyncpg for the PostgreSQL adapter.
"""
