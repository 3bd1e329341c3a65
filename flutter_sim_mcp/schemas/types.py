"""
Shared type definitions for schemas.

Centralizes the base models and annotations used across session, process
and test-run schemas.
"""

from __future__ import annotations

import pydantic

# ==============================================================================
# Base Strict Model (Foundation)
# ==============================================================================


class BaseStrictModel(pydantic.BaseModel):
    """
    Foundation strict model - every schema in the package inherits from this.

    Uses extra='forbid' to reject unknown fields so malformed tool input fails
    at the boundary instead of deep inside a service.
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',  # Reject unknown fields (fail-fast)
        strict=True,  # Strict type coercion
        frozen=True,  # Immutable after creation
    )


# ==============================================================================
# External Event Model (Foundation)
# ==============================================================================


class ExternalEventModel(pydantic.BaseModel):
    """
    Lenient model for JSON emitted by external tools.

    The flutter machine reporter adds fields between releases; only the fields
    we read are declared and everything else is ignored.
    """

    model_config = pydantic.ConfigDict(
        extra='ignore',
        frozen=True,
    )


type PathStr = str
"""A filesystem path (file or directory) as a string."""
