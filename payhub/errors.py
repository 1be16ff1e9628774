"""Exception types raised inside the core.

Expected business outcomes (no gateway available, failed delivery, exhausted
retries) are returned as values; these exceptions cover the rest.
"""


class PayHubError(Exception):
    """Base class for payhub errors."""


class ConfigurationFault(PayHubError):
    """A referenced gateway registration, endpoint or secret is missing."""


class HealthProbeFault(PayHubError):
    """A gateway health probe raised or timed out."""

    def __init__(self, gateway_type: str, reason: str):
        super().__init__(f"{gateway_type}: {reason}")
        self.gateway_type = gateway_type
        self.reason = reason
