"""Settlement services: chain adapters and the settlement engine."""
