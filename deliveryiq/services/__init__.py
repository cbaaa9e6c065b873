"""Batch jobs and query services that wire the engine to the database."""
