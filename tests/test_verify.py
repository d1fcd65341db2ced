"""Tests for encryption verification and the content filter adapter."""

import pytest

from conftest import MAGIC, git, init_repo, write
from nixcfg.errors import HostEnvironmentError, IntegrityError, ValidationError
from nixcfg.git import Git
from nixcfg.secrets.filter import ContentFilter, FilterStatus
from nixcfg.secrets.layers import Layer, layer_specs
from nixcfg.secrets.verify import verify_commits, verify_committed, verify_decrypted

NITHRA = "Private/nithra/git-agecrypt.nix"
MALDORIA = "Private/maldoria/git-agecrypt.nix"


def _commit_all(repo, message="commit"):
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)


# -----------------------------------------------------------------------------
# Committed state
# -----------------------------------------------------------------------------


class TestVerifyCommitted:
    def test_filtered_commit_passes(self, repo, settings):
        write(repo, "flake.nix", "{ }\n")
        write(repo, NITHRA, "{ a = 1; }\n")
        _commit_all(repo)

        assert verify_committed(Git(repo), settings) == [NITHRA]

    def test_no_secret_files_passes(self, repo, settings):
        write(repo, "flake.nix", "{ }\n")
        _commit_all(repo)
        assert verify_committed(Git(repo), settings) == []

    def test_unfiltered_commit_fails_with_every_offender(self, tmp_path, filters, settings):
        repo = init_repo(tmp_path / "plain", filters, attributes=None)
        write(repo, NITHRA, "{ a = 1; }\n")
        write(repo, MALDORIA, "{ b = 2; }\n")
        _commit_all(repo)

        with pytest.raises(IntegrityError) as exc:
            verify_committed(Git(repo), settings)
        err = exc.value
        assert err.exit_code == 5
        assert err.offending == [MALDORIA, NITHRA]
        assert any("git reset" in step for step in err.remediation)
        assert any("Do NOT push" in step for step in err.remediation)
        # the commit is left in place
        assert git(repo, "rev-list", "--count", "HEAD") == "1"

    def test_partial_encryption_names_only_plaintext_file(self, tmp_path, filters, settings):
        repo = init_repo(tmp_path / "partial", filters, attributes=f"{NITHRA} filter=git-agecrypt")
        write(repo, NITHRA, "{ a = 1; }\n")
        write(repo, MALDORIA, "{ b = 2; }\n")
        _commit_all(repo)

        with pytest.raises(IntegrityError) as exc:
            verify_committed(Git(repo), settings)
        assert exc.value.offending == [MALDORIA]
        assert "1 of 2" in exc.value.message

    def test_unrecognised_blob_counts_as_offender(self, tmp_path, filters, settings):
        repo = init_repo(tmp_path / "odd", filters, attributes=None)
        write(repo, NITHRA, "").write_bytes(b"\x00\x01\xffjunk\n")
        _commit_all(repo)

        with pytest.raises(IntegrityError) as exc:
            verify_committed(Git(repo), settings)
        assert exc.value.offending == [NITHRA]

    def test_checks_stored_blob_not_working_copy(self, tmp_path, filters, settings):
        repo = init_repo(tmp_path / "wc", filters, attributes=None)
        write(repo, NITHRA, "{ a = 1; }\n")
        _commit_all(repo)
        # an encrypted-looking working copy does not rescue the commit
        write(repo, NITHRA, MAGIC + "\nbody\n")

        with pytest.raises(IntegrityError):
            verify_committed(Git(repo), settings)

    def test_verify_commits_checks_each(self, repo, settings):
        write(repo, NITHRA, "{ a = 1; }\n")
        _commit_all(repo, "one")
        write(repo, "flake.nix", "{ }\n")
        _commit_all(repo, "two")

        revs = Git(repo).rev_list("HEAD")
        assert verify_commits(Git(repo), settings, revs) == 2


# -----------------------------------------------------------------------------
# Working-copy state
# -----------------------------------------------------------------------------


class TestVerifyDecrypted:
    def test_plaintext_and_missing_pass(self, tmp_path, settings):
        spec = layer_specs(settings.secrets)[Layer.A]
        write(tmp_path, NITHRA, "{ }\n")
        verify_decrypted(tmp_path, [NITHRA, MALDORIA], spec, settings)

    @pytest.mark.parametrize(
        "content",
        ["inputs: { a = 1; }\n", "[ \"x\" ]\n", "\"hunter2\"\n", "import ./x.nix\n"],
    )
    def test_any_nix_expression_passes(self, tmp_path, settings, content):
        spec = layer_specs(settings.secrets)[Layer.A]
        write(tmp_path, NITHRA, content)
        verify_decrypted(tmp_path, [NITHRA], spec, settings)

    def test_ciphertext_fails(self, tmp_path, settings):
        spec = layer_specs(settings.secrets)[Layer.A]
        write(tmp_path, NITHRA, MAGIC + "\nabc\n")
        with pytest.raises(HostEnvironmentError) as exc:
            verify_decrypted(tmp_path, [NITHRA], spec, settings)
        assert NITHRA in exc.value.message
        assert any("nixcfg unlock" in step for step in exc.value.remediation)


class TestContentFilter:
    def test_status_ok_with_usable_binary(self, repo, settings, runner):
        assert ContentFilter(Git(repo), settings, runner).status() is FilterStatus.OK

    def test_status_missing(self, repo, settings, runner):
        git(repo, "config", "--unset", "filter.git-agecrypt.smudge")
        assert ContentFilter(Git(repo), settings, runner).status() is FilterStatus.MISSING

    def test_status_stale_binary(self, repo, settings, runner):
        git(repo, "config", "filter.git-agecrypt.smudge", "/nix/store/gone-git-agecrypt/bin/git-agecrypt smudge -f %f")
        assert ContentFilter(Git(repo), settings, runner).status() is FilterStatus.STALE

    def test_ensure_repairs_stale_registration(self, repo, settings, runner, key_file):
        git(repo, "config", "filter.git-agecrypt.smudge", "/nix/store/gone/bin/git-agecrypt smudge")
        status = ContentFilter(Git(repo), settings, runner).ensure(key_file)

        assert status is FilterStatus.STALE
        assert "git-agecrypt init" in runner.commands()
        # identity already listed, so it is not added again
        assert not [c for c in runner.commands() if "config add" in c]

    def test_ensure_adds_identity_when_absent(self, repo, settings, runner, key_file):
        git(repo, "config", "--unset", "filter.git-agecrypt.smudge")
        runner.responses["git-agecrypt config list --identity"] = (0, "")
        with pytest.raises(HostEnvironmentError, match="configuration failed"):
            # the fake tool does not write git config, so registration cannot be confirmed
            ContentFilter(Git(repo), settings, runner).ensure(key_file)
        assert f"git-agecrypt config add -i {key_file}" in runner.commands()

    def test_init_failure_is_environment_error(self, repo, settings, runner, key_file):
        runner.responses["git-agecrypt init"] = (1, "")
        with pytest.raises(HostEnvironmentError, match="init failed"):
            ContentFilter(Git(repo), settings, runner).rebind(key_file)

    def test_decrypt_working_copy(self, repo, settings, runner):
        write(repo, NITHRA, "{ a = 1; }\n")
        _commit_all(repo)
        # simulate a clone made before the filter was configured
        write(repo, NITHRA, git(repo, "cat-file", "blob", f"HEAD:{NITHRA}") + "\n")

        cf = ContentFilter(Git(repo), settings, runner)
        assert cf.encrypted_paths() == [NITHRA]
        assert cf.decrypt_working_copy() == [NITHRA]
        assert (repo / NITHRA).read_text() == "{ a = 1; }\n"
        assert cf.decrypt_working_copy() == []

    def test_encrypted_paths_rejects_binary(self, repo, settings, runner):
        write(repo, NITHRA, "").write_bytes(b"\x00\x01\xffjunk\n")
        with pytest.raises(ValidationError, match="neither encrypted nor readable text"):
            ContentFilter(Git(repo), settings, runner).encrypted_paths()
