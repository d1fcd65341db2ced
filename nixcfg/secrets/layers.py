"""
Secret layer model.

Layer A holds values needed at or before configuration evaluation. It is
plaintext in the working copy and becomes ciphertext only on its way into a
commit, through the path-bound content filter.

Layer B holds values needed only at activation. It is ciphertext everywhere,
working copy included, and is decrypted into a runtime store by the
activation tooling with a different key.

The state of a secret file is never stored; it is derived from content by
`detect_state`, the single place that knows what ciphertext looks like.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path

import yaml

from ..config import SecretsSettings


class Layer(str, Enum):
    A = "A"  # evaluation/build time, filtered on commit
    B = "B"  # activation time, ciphertext at rest


class SecretState(str, Enum):
    PLAINTEXT = "plaintext"
    CIPHERTEXT = "ciphertext"
    MISSING = "missing"


class UnrecognisedContent(ValueError):
    """Content is neither recognisable plaintext nor ciphertext."""

    def __init__(self, layer: Layer, first_line: str):
        self.layer = layer
        self.first_line = first_line
        super().__init__(f"Layer {layer.value}: unrecognised content starting with {first_line[:40]!r}")


@dataclass(frozen=True)
class LayerSpec:
    layer: Layer
    pattern: str  # repository-relative glob
    magic: str  # ciphertext marker (header line for A, metadata key for B)


# NUL bytes or undecodable sequences never appear in a Nix source file
_BINARY = ("\x00", "\ufffd")


def layer_specs(settings: SecretsSettings) -> dict[Layer, LayerSpec]:
    return {
        Layer.A: LayerSpec(Layer.A, settings.layer_a_glob, settings.layer_a_header),
        Layer.B: LayerSpec(Layer.B, settings.layer_b_glob, settings.layer_b_marker),
    }


def classify(path: str, settings: SecretsSettings) -> Layer | None:
    """Layer of a repository-relative path, or None when it is not a secret file."""
    normalised = path.replace("\\", "/")
    if normalised.startswith("./"):
        normalised = normalised[2:]
    for spec in layer_specs(settings).values():
        if fnmatch(normalised, spec.pattern):
            return spec.layer
    return None


def has_magic_header(content: str, magic: str) -> bool:
    """True when the first line of `content` is exactly the ciphertext header."""
    first_line = content.split("\n", 1)[0].rstrip("\r")
    return first_line == magic


def _first_meaningful_line(content: str) -> str:
    for line in content.splitlines():
        if line.strip():
            return line.strip()
    return ""


def detect_state(content: str | None, spec: LayerSpec) -> SecretState:
    """
    Classify content of a secret file.

    Raises:
        UnrecognisedContent: When the content is neither plaintext nor
            ciphertext for the layer. Callers must not guess.
    """
    if content is None:
        return SecretState.MISSING

    if spec.layer is Layer.A:
        if has_magic_header(content, spec.magic):
            return SecretState.CIPHERTEXT
        if any(marker in content for marker in _BINARY):
            raise UnrecognisedContent(spec.layer, _first_meaningful_line(content))
        return SecretState.PLAINTEXT

    if not content.strip():
        return SecretState.PLAINTEXT
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise UnrecognisedContent(spec.layer, _first_meaningful_line(content)) from e
    if document is None:
        # comment-only document
        return SecretState.PLAINTEXT
    if not isinstance(document, dict):
        raise UnrecognisedContent(spec.layer, _first_meaningful_line(content))
    if isinstance(document.get(spec.magic), dict):
        return SecretState.CIPHERTEXT
    return SecretState.PLAINTEXT


def read_working_copy(path: Path) -> str | None:
    if not path.is_file():
        return None
    return path.read_bytes().decode("utf-8", errors="replace")


def working_state(repo_root: Path, rel_path: str, spec: LayerSpec) -> SecretState:
    return detect_state(read_working_copy(repo_root / rel_path), spec)


def discover(repo_root: Path, settings: SecretsSettings) -> list[tuple[str, Layer]]:
    """Secret files present in the working copy, sorted by path."""
    found: list[tuple[str, Layer]] = []
    for spec in layer_specs(settings).values():
        for p in repo_root.glob(spec.pattern):
            if p.is_file():
                found.append((p.relative_to(repo_root).as_posix(), spec.layer))
    return sorted(found)
