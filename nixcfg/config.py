"""
Repository settings.

Defaults follow the repository conventions; an optional `nixcfg.toml` at the
repository root overrides them. The file is small on purpose: settings are
data, workflow behaviour is code.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .hosts import HostRegistry, Platform

CONFIG_FILENAME = "nixcfg.toml"

DEFAULT_HOSTS: tuple[tuple[str, Platform], ...] = (
    ("Nithra", Platform.LINUX),
    ("Maldoria", Platform.DARWIN),
)


@dataclass(frozen=True)
class SecretsSettings:
    secrets_dir: str = "Private"
    layer_a_glob: str = "Private/*/git-agecrypt.nix"
    layer_b_glob: str = "Private/*/sops-nix.yaml"
    layer_a_header: str = "age-encryption.org/v1"
    layer_b_marker: str = "sops"
    filter_name: str = "git-agecrypt"
    layer_a_recipients: str = "git-agecrypt.toml"
    layer_b_recipients: str = ".sops.yaml"


@dataclass(frozen=True)
class KeySettings:
    layer_a_key: str = "~/.config/git-agecrypt/keys.txt"
    layer_b_key: str = "/var/lib/sops-nix/key.txt"
    layer_b_staging_key: str = "/tmp/sops-nix-key.txt"
    key_prefix: str = "AGE-SECRET-KEY-"

    @property
    def layer_a_key_path(self) -> Path:
        return Path(self.layer_a_key).expanduser()


@dataclass(frozen=True)
class GitSettings:
    primary_branch: str = "main"
    remote: str = "origin"
    require_signed_commits: bool = True
    orphan_branch: str = "nixcfg-reset"


@dataclass(frozen=True)
class ProvisionSettings:
    target_root: str = "/mnt"
    layout_file: str = "Hosts/{host}/disko-config.nix"
    min_passphrase_length: int = 20


@dataclass(frozen=True)
class Settings:
    hosts: tuple[tuple[str, Platform], ...] = DEFAULT_HOSTS
    live_installer_name: str = "nixos"
    secrets: SecretsSettings = field(default_factory=SecretsSettings)
    keys: KeySettings = field(default_factory=KeySettings)
    git: GitSettings = field(default_factory=GitSettings)
    provision: ProvisionSettings = field(default_factory=ProvisionSettings)

    @property
    def registry(self) -> HostRegistry:
        return HostRegistry(hosts=self.hosts, live_installer_name=self.live_installer_name)

    def layout_path(self, repo_root: Path, host_name: str) -> Path:
        return repo_root / self.provision.layout_file.format(host=host_name)


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _section(base: Any, data: dict[str, Any]) -> Any:
    """Overlay known keys of a TOML table onto a settings dataclass."""
    known = {k: v for k, v in data.items() if k in base.__dataclass_fields__}
    for key, value in known.items():
        expected = type(getattr(base, key))
        # TOML booleans are ints to isinstance
        if not isinstance(value, expected) or (isinstance(value, bool) and expected is not bool):
            raise ValueError(f"{key} must be {expected.__name__}, got {type(value).__name__}")
    return replace(base, **known)


def _parse_hosts(raw: dict[str, Any]) -> tuple[tuple[str, Platform], ...]:
    hosts: list[tuple[str, Platform]] = []
    for name, plat in raw.items():
        try:
            hosts.append((str(name), Platform(str(plat).strip().lower())))
        except ValueError as e:
            raise ValueError(f"host {name!r}: platform must be 'linux' or 'darwin'") from e
    if not hosts:
        raise ValueError("[hosts] must name at least one host")
    return tuple(hosts)


def load_settings(repo_root: Path) -> Settings:
    """
    Load settings from `<repo_root>/nixcfg.toml`, falling back to defaults.

    Raises:
        ValueError: If the file exists but is malformed.
    """
    path = repo_root / CONFIG_FILENAME
    if not path.exists():
        return Settings()

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Failed to parse {CONFIG_FILENAME}: {e}") from e

    settings = Settings()
    hosts_raw = _coerce_dict(data.get("hosts"))
    if hosts_raw:
        settings = replace(settings, hosts=_parse_hosts(hosts_raw))

    live_name = data.get("live_installer_name")
    if isinstance(live_name, str) and live_name.strip():
        settings = replace(settings, live_installer_name=live_name.strip())

    return replace(
        settings,
        secrets=_section(settings.secrets, _coerce_dict(data.get("secrets"))),
        keys=_section(settings.keys, _coerce_dict(data.get("keys"))),
        git=_section(settings.git, _coerce_dict(data.get("git"))),
        provision=_section(settings.provision, _coerce_dict(data.get("provision"))),
    )
