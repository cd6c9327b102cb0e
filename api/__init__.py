"""
HTTP surface of the safe transit routing service.
"""
