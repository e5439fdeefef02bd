"""Chat session persistence.

Dependency-light at import time: psycopg is imported lazily inside functions so the engine can
run tool-only turns without database access.
"""
