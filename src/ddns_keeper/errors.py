"""Error taxonomy for ddns-keeper.

Every error raised inside a reconciliation cycle derives from DDNSError and is
caught at the cycle boundary by the worker.
"""


class DDNSError(Exception):
    """Base class for all ddns-keeper errors."""

    @property
    def kind(self) -> str:
        """Return the error kind for logging."""
        return type(self).__name__


# =============================================================================
# Address Resolution
# =============================================================================


class ResolutionError(DDNSError):
    """The host address could not be determined this cycle."""


class CommandError(ResolutionError):
    """An external command failed to launch, exited non-zero or timed out."""


class ParseError(ResolutionError):
    """Command output is not an address, or not of the declared family."""


# =============================================================================
# Registrar
# =============================================================================


class RegistrarError(DDNSError):
    """A registrar lookup or update failed."""


class LookupAmbiguous(RegistrarError):
    """The registrar returned zero or several records for one record spec."""


class LookupFailed(RegistrarError):
    """The registrar answered the lookup with a non-success response."""


class WriteFailed(RegistrarError):
    """The registrar rejected the update or answered with a non-success response."""


class UnsupportedRecordType(RegistrarError):
    """The registrar variant cannot manage the requested record type."""


class TransportError(RegistrarError):
    """The registrar could not be reached (network failure or timeout)."""


# =============================================================================
# Configuration
# =============================================================================


class ConfigError(ValueError):
    """Invalid configuration file or record definition."""
