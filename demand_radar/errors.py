class RadarError(Exception):
    """Base class for demand radar failures."""


class ConfigError(RadarError):
    """The radar configuration file is missing keys or has invalid values."""


class FetchError(RadarError):
    """A platform could not be fetched at all (network, auth, bad payload)."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class StoreError(RadarError):
    """The persistence layer rejected an operation."""
