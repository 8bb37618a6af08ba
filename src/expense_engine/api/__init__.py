"""HTTP API for the expense approval engine."""
