"""
Sluice - bounded-concurrency submission scheduler.

Feeds jobs to a remote generation service that caps concurrent work,
reconciling in-flight jobs against a polled view of the service.
"""

__version__ = "0.3.0"
