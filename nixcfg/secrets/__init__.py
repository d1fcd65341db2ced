"""
Secret files: layer model, encryption state verification, content filter
and key handling.
"""

from __future__ import annotations

from .filter import ContentFilter, FilterStatus
from .keys import KeyInstaller, derive_public_key, key_problem
from .layers import (
    Layer,
    LayerSpec,
    SecretState,
    UnrecognisedContent,
    classify,
    detect_state,
    discover,
    layer_specs,
)
from .verify import verify_commits, verify_committed, verify_decrypted

__all__ = [
    # Layers
    "Layer",
    "LayerSpec",
    "SecretState",
    "UnrecognisedContent",
    "classify",
    "detect_state",
    "discover",
    "layer_specs",
    # Verification
    "verify_commits",
    "verify_committed",
    "verify_decrypted",
    # Filter and keys
    "ContentFilter",
    "FilterStatus",
    "KeyInstaller",
    "derive_public_key",
    "key_problem",
]
