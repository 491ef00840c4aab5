"""Entitlements domain: plan entitlement lookup and allow/deny evaluation."""
