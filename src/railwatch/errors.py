"""Exceptions raised while ingesting and decoding rail feeds."""

from typing import Optional


class RailwatchError(Exception):
    """Base class for all railwatch errors."""


class FeedError(RailwatchError):
    """An error tied to a single agency's feed."""

    def __init__(self, message: str, agency: Optional[str] = None):
        super().__init__(message)
        self.agency = agency

    def __str__(self) -> str:
        message = super().__str__()
        if self.agency:
            return f"[{self.agency}] {message}"
        return message


class UpstreamUnavailable(FeedError):
    """The upstream feed could not be fetched (network, HTTP status, timeout)."""


class DecodeError(FeedError):
    """The feed was fetched but its payload could not be decoded."""


class DecryptionError(DecodeError):
    """The Amtrak payload could not be decrypted."""


class PartialRecordError(FeedError):
    """A single train or stop inside an otherwise valid feed is malformed."""


class DateParseError(PartialRecordError, ValueError):
    """A date/time string did not match any supported layout."""


class UnknownTimezoneCode(RailwatchError, KeyError):
    """A feed-local timezone code has no IANA mapping."""

    def __str__(self) -> str:
        return f"Unknown timezone code: {self.args[0]!r}"


class UnknownHeading(RailwatchError, KeyError):
    """A compass-point heading has no degree mapping."""

    def __str__(self) -> str:
        return f"Unknown heading: {self.args[0]!r}"


class CipherSelfCheckError(RailwatchError):
    """The Amtrak cipher constants failed to decrypt the known sample."""
