"""Credits domain: prepaid credit ledger, expiry sweep and recurring grants."""
