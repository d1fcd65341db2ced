"""Tests for host classification and workflow host gating."""

import pytest

from nixcfg.config import Settings
from nixcfg.errors import HostEnvironmentError
from nixcfg.hosts import (
    Host,
    HostKind,
    HostRegistry,
    Platform,
    classify,
    describe,
    normalise_name,
    validate_host_platform,
)
from nixcfg.workflows.base import require_host


@pytest.fixture
def registry() -> HostRegistry:
    return Settings().registry


class TestNormaliseName:
    def test_lowercases(self):
        assert normalise_name("Nithra") == "nithra"

    def test_strips_local_suffix(self):
        assert normalise_name("Maldoria.local") == "maldoria"
        assert normalise_name("MALDORIA.LOCAL") == "maldoria"

    def test_strips_whitespace(self):
        assert normalise_name("  nithra\n") == "nithra"


class TestClassify:
    def test_live_installer(self, registry):
        host = classify("nixos", registry)
        assert host.kind is HostKind.LIVE_INSTALLER
        assert host.is_live_installer
        assert host.platform is None

    def test_known_host_case_insensitive(self, registry):
        host = classify("NITHRA", registry)
        assert host.kind is HostKind.KNOWN
        assert host.name == "Nithra"
        assert host.platform is Platform.LINUX
        assert host.build_target == "nithra"

    def test_known_darwin_host_with_local_suffix(self, registry):
        host = classify("Maldoria.local", registry)
        assert host.is_known
        assert host.name == "Maldoria"
        assert host.platform is Platform.DARWIN

    def test_unknown_host_keeps_reported_name(self, registry):
        host = classify("Workstation-7", registry)
        assert host.kind is HostKind.UNKNOWN
        assert host.name == "Workstation-7"

    def test_custom_live_installer_name(self):
        registry = HostRegistry(hosts=(("Alpha", Platform.LINUX),), live_installer_name="installer")
        assert classify("installer", registry).is_live_installer
        assert classify("nixos", registry).kind is HostKind.UNKNOWN

    def test_names_for_platform(self, registry):
        assert registry.names_for(Platform.LINUX) == ["Nithra"]
        assert registry.names_for(Platform.DARWIN) == ["Maldoria"]


class TestValidateHostPlatform:
    def test_matching_platform(self, registry):
        assert validate_host_platform(classify("Nithra", registry), Platform.LINUX)

    def test_mismatched_platform(self, registry):
        assert not validate_host_platform(classify("Nithra", registry), Platform.DARWIN)
        assert not validate_host_platform(classify("Maldoria", registry), Platform.LINUX)

    def test_unknown_and_live_installer_fail(self, registry):
        assert not validate_host_platform(classify("nixos", registry), Platform.LINUX)
        assert not validate_host_platform(Host(kind=HostKind.UNKNOWN, name="x"), Platform.LINUX)


class TestPlatform:
    def test_from_system(self):
        assert Platform.from_system("Darwin") is Platform.DARWIN
        assert Platform.from_system("Linux") is Platform.LINUX

    def test_describe(self, registry):
        assert describe(classify("nixos", registry), Platform.LINUX) == "Detected NixOS live installer"
        assert describe(classify("maldoria", registry), Platform.DARWIN) == "Detected Maldoria (Darwin)"
        assert "Unknown hostname" in describe(classify("other", registry), Platform.LINUX)


# -----------------------------------------------------------------------------
# Workflow gating
# -----------------------------------------------------------------------------


class TestRequireHost:
    def test_known_host_on_matching_platform(self, tmp_path, make_ctx):
        ctx = make_ctx(tmp_path, host="Nithra", platform=Platform.LINUX)
        assert require_host(ctx).name == "Nithra"

    def test_unknown_host_refused_with_supported_list(self, tmp_path, make_ctx):
        ctx = make_ctx(tmp_path, host="mystery")
        with pytest.raises(HostEnvironmentError) as exc:
            require_host(ctx)
        assert exc.value.exit_code == 2
        assert any("Nithra" in line and "Maldoria" in line for line in exc.value.remediation)

    def test_platform_mismatch_refused(self, tmp_path, make_ctx):
        ctx = make_ctx(tmp_path, host="Maldoria", platform=Platform.LINUX)
        with pytest.raises(HostEnvironmentError, match="Darwin host"):
            require_host(ctx)

    def test_live_installer_refused_when_not_allowed(self, tmp_path, make_ctx):
        ctx = make_ctx(tmp_path, host="nixos")
        with pytest.raises(HostEnvironmentError, match="live installer"):
            require_host(ctx, allow_live_installer=False)

    def test_known_host_refused_when_only_installer_allowed(self, tmp_path, make_ctx):
        ctx = make_ctx(tmp_path, host="Nithra")
        with pytest.raises(HostEnvironmentError, match="only runs on the live installer"):
            require_host(ctx, allow_known=False)
