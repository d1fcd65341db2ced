"""
Host classification.

Decides which execution context the tool is running in (live installer,
a known deployed machine, or something unrecognised) and which platform
family that machine requires. Classification is pure: the reported machine
name and OS family are inputs, never read from globals here.
"""

from __future__ import annotations

import platform as _platform
import socket
from dataclasses import dataclass
from enum import Enum


class Platform(str, Enum):
    LINUX = "linux"
    DARWIN = "darwin"

    @classmethod
    def from_system(cls, system: str) -> Platform:
        """Map a `uname -s` style name onto a platform family."""
        return cls.DARWIN if system.strip().lower() == "darwin" else cls.LINUX

    @property
    def label(self) -> str:
        return "Darwin" if self is Platform.DARWIN else "NixOS"


class HostKind(str, Enum):
    LIVE_INSTALLER = "live_installer"
    KNOWN = "known"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Host:
    """Result of classifying the reported machine name."""

    kind: HostKind
    name: str  # Registry spelling for KNOWN, reported spelling otherwise
    platform: Platform | None = None  # Required platform (KNOWN only)

    @property
    def is_live_installer(self) -> bool:
        return self.kind is HostKind.LIVE_INSTALLER

    @property
    def is_known(self) -> bool:
        return self.kind is HostKind.KNOWN

    @property
    def build_target(self) -> str:
        """Flake attribute name (lowercase host name)."""
        return self.name.lower()


@dataclass(frozen=True)
class HostRegistry:
    """Known host names, each tagged with the platform it must run on."""

    hosts: tuple[tuple[str, Platform], ...]
    live_installer_name: str = "nixos"

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.hosts]

    def names_for(self, platform: Platform) -> list[str]:
        return [name for name, plat in self.hosts if plat is platform]

    def lookup(self, name: str) -> tuple[str, Platform] | None:
        """Case-insensitive lookup; first match wins."""
        wanted = normalise_name(name)
        for known, plat in self.hosts:
            if known.lower() == wanted:
                return (known, plat)
        return None


def normalise_name(name: str) -> str:
    """Lowercase and drop the macOS `.local` suffix."""
    cleaned = name.strip()
    if cleaned.lower().endswith(".local"):
        cleaned = cleaned[: -len(".local")]
    return cleaned.lower()


def classify(name: str, registry: HostRegistry) -> Host:
    """Classify a reported machine name against the registry."""
    normalised = normalise_name(name)
    if normalised == registry.live_installer_name.lower():
        return Host(kind=HostKind.LIVE_INSTALLER, name=name)

    match = registry.lookup(normalised)
    if match is None:
        return Host(kind=HostKind.UNKNOWN, name=name)

    known, plat = match
    return Host(kind=HostKind.KNOWN, name=known, platform=plat)


def validate_host_platform(host: Host, actual: Platform) -> bool:
    """
    True when the host's required platform matches the runtime platform.

    Unknown hosts and the live installer have no registry entry and fail,
    so callers must handle those kinds before relying on this result.
    """
    if host.kind is not HostKind.KNOWN or host.platform is None:
        return False
    return host.platform is actual


def detect_machine() -> tuple[str, Platform]:
    """Read the reported machine name and platform family of this machine."""
    return (socket.gethostname(), Platform.from_system(_platform.system()))


def describe(host: Host, actual: Platform) -> str:
    """One-line detection message."""
    if host.is_live_installer:
        return "Detected NixOS live installer"
    if host.is_known:
        return f"Detected {host.name} ({actual.label})"
    return f"Unknown hostname '{host.name}'"
