"""
FastAPI routers for the gymdesk API.

Each module groups the endpoints of one domain: member imports and analytics.
"""
