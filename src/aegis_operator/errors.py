"""Exception hierarchy shared by every layer of the operator."""

from __future__ import annotations


class AegisError(Exception):
    """Base class for all operator errors."""


class ConfigurationError(AegisError):
    """Owner-correctable misconfiguration (missing selector, secret key, bad repo)."""


class CollectionError(AegisError):
    """The observability snapshot could not be assembled at all."""


class DiagnosisError(AegisError):
    """The oracle failed to return a usable diagnosis."""


class RemediationError(AegisError):
    """A healing pull request could not be opened."""


class ManifestNotFoundError(RemediationError):
    """No deployment manifest exists at any conventional repository path."""


class PatchRejectedError(RemediationError):
    """The suggested patch touches fields outside the allow-list."""


class NoOpPatchError(RemediationError):
    """The suggested patch leaves the manifest unchanged."""


class StatusConflictError(AegisError):
    """The AegisWatch status kept changing underneath us."""


class NotificationError(AegisError):
    """The notification webhook rejected or did not receive the update."""


class ReconcileCancelled(AegisError):
    """The reconcile deadline passed or the manager is shutting down."""
