"""Idempotency domain: exactly-once execution of mutating operations."""
