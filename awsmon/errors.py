"""Exception hierarchy shared by the agent components."""


class AwsmonError(Exception):
    """Base class for all agent errors."""


class ConfigError(AwsmonError):
    """Configuration is invalid or incomplete. Aborts the process at startup."""


class DiscoveryError(AwsmonError):
    """Listing instances failed; the whole reconciliation cycle is skipped."""


class CollectorInitError(AwsmonError):
    """An instance collector could not be constructed; retried next cycle."""


class RegistrationError(AwsmonError):
    """An instance is already registered under the same label value."""


class LogSourceError(AwsmonError):
    """Listing or downloading remote log files failed."""
