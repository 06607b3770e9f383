"""Excepciones propias del bridge."""

from __future__ import annotations


class FlushError(Exception):
    """A buffered batch could not be written even at the smallest batch size."""


class DestinationProvisioningError(Exception):
    """Bucket/database provisioning (create-if-missing) failed."""
