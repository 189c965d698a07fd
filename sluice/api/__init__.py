"""
Operator HTTP API for the submission scheduler.
"""
