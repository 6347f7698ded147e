"""
Infrastructure layer - external service integrations.

- storage: Object storage gateway (cloud bucket or local disk)
"""
