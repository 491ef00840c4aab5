"""Meterline: usage metering, entitlement evaluation, and credit ledger."""
