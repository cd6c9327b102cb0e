"""
Service layer wiring the routing core into the API.
"""
