"""Property-data provider adapters and their shared HTTP transport."""
