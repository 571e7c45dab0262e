"""Exception hierarchy for the access reconciliation core.

Every failure the core surfaces to a caller derives from AccessError so the
API layer can map it to a status code without knowing the call site.
Partial side-effect failures are deliberately absent: they are logged and
reported, never raised.
"""

from __future__ import annotations


class AccessError(Exception):
    """Base exception for access control errors."""


class InvalidRequest(AccessError):
    """Bad input rejected before any state change."""


class SubjectNotFound(AccessError):
    """The tracker is not a configured subject."""


class RuleNotFound(AccessError):
    """A configured subject has no matching rule on the firewall."""


class CollaboratorUnavailable(AccessError):
    """A downstream call failed, timed out, or returned an unusable payload."""


class ResolutionFailure(AccessError):
    """A lookup the operation depends on produced no result."""


class NoUpcomingWindow(ResolutionFailure):
    """A skip was requested but no schedule window is active or upcoming."""


class AddressGroupNotFound(ResolutionFailure):
    """A rule references an address group the firewall does not define."""
