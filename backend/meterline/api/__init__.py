"""HTTP boundary of the metering service."""
