"""Polling utilities: a generic retry-until-done client and a DNS propagation check."""

from orgauth.models import PollConfig, PollResult
from orgauth.status.domain_resolver import MyDomainResolver
from orgauth.status.polling_client import PollingClient

__all__ = ["MyDomainResolver", "PollConfig", "PollResult", "PollingClient"]
