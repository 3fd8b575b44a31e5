"""Adapters implementing application ports."""

from .credentials import SessionCredentials
from .http_jobs_client import HttpJobsClient

__all__ = ["HttpJobsClient", "SessionCredentials"]
