"""
Remote service adapters implementing the scheduler ports.
"""

from .api_client import HttpSubmissionPort, HttpObservationPort

__all__ = ["HttpSubmissionPort", "HttpObservationPort"]
