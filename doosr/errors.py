from __future__ import annotations


class NotFoundError(LookupError):
    """A record the caller asked for does not exist or is not theirs."""
