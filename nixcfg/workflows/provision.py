"""
Disk provisioning from the live installer.

Wipes the block device named in the host's disk layout and hands it to the
partitioner with an encryption passphrase. Once the device has been touched
a failure is reported as a partial device state, not a generic error,
because the disk (not just the workflow) is then in an unknown state.
"""

from __future__ import annotations

import os
import re
import stat
from pathlib import Path

from rich.table import Table

from ..audit_log import CreationSummary, ErasureCost, log_operation
from ..errors import HostEnvironmentError, PartialDeviceStateError, ValidationError
from ..hosts import Platform
from ..prompt import choose_host
from ..system import Runner, privileged
from .base import WorkflowOutcome, require_host

NIX_EVAL = ["nix", "--extra-experimental-features", "nix-command", "eval"]
DISKO = ["nix", "--experimental-features", "nix-command flakes", "run", "github:nix-community/disko", "--", "--mode", "disko"]

DEVICE_EXPR = "(builtins.head (builtins.attrValues .disko.devices.disk)).device"
DEVICE_LITERAL = re.compile(r'device\s*=\s*"(/dev/[^"]*)"')


def passphrase_problems(passphrase: str, min_length: int = 20) -> list[str]:
    """Policy violations for a volume passphrase; empty means acceptable."""
    if not passphrase:
        return ["Passphrase cannot be empty"]
    problems: list[str] = []
    if len(passphrase) < min_length:
        problems.append(f"Passphrase must be at least {min_length} characters")
    classes = [
        re.search(r"[a-z]", passphrase),
        re.search(r"[A-Z]", passphrase),
        re.search(r"[0-9]", passphrase),
        re.search(r"[^a-zA-Z0-9]", passphrase),
    ]
    if not all(classes):
        problems.append("Passphrase must contain all of: lowercase, uppercase, numbers, and symbols")
    return problems


class DiskInspector:
    """Read-only queries about the layout description and block devices."""

    def __init__(self, runner: Runner):
        self.runner = runner

    def read_device(self, layout: Path) -> str | None:
        try:
            result = self.runner([*NIX_EVAL, "--file", str(layout), "--raw", DEVICE_EXPR], capture=True)
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
        except FileNotFoundError:
            pass  # no nix on PATH; fall back to the literal
        match = DEVICE_LITERAL.search(layout.read_text(encoding="utf-8"))
        return match.group(1) if match else None

    def layout_valid(self, layout: Path) -> bool:
        try:
            return self.runner([*NIX_EVAL, "--file", str(layout)], capture=True).returncode == 0
        except FileNotFoundError:
            return True  # cannot check without nix; the partitioner will

    def is_block_device(self, device: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(device).st_mode)
        except OSError:
            return False

    def mounted_partitions(self, device: str) -> list[str]:
        result = self.runner(["mount"], capture=True)
        pattern = re.compile(rf"^{re.escape(device)}[p0-9]*\s")
        return [line for line in (result.stdout or "").splitlines() if pattern.match(line)]

    def _lsblk(self, *args: str) -> str:
        result = self.runner(["lsblk", *args], capture=True)
        return (result.stdout or "").strip() if result.returncode == 0 else ""

    def details(self, device: str) -> tuple[str, str, list[str]]:
        """Size, model and current partitions of `device`."""
        size = self._lsblk("-dpno", "SIZE", device) or "unknown"
        model = " ".join(self._lsblk("-dpno", "MODEL", device).split()) or "unknown"
        partitions = self._lsblk("-pno", "NAME,SIZE,FSTYPE", device).splitlines()[1:]
        return size, model, [p.strip() for p in partitions if p.strip()]

    def available_disks(self) -> list[str]:
        return self._lsblk("-dpno", "NAME,SIZE,MODEL").splitlines()


class ProvisioningWorkflow:
    def __init__(self, ctx, host_arg: str | None = None, inspector: DiskInspector | None = None):
        self.ctx = ctx
        self.host_arg = host_arg
        self.settings = ctx.settings
        self.console = ctx.console
        self.runner = ctx.runner
        self.inspector = inspector or DiskInspector(ctx.runner)
        self.device_mutated = False

    def resolve_target(self) -> str:
        registry = self.settings.registry
        linux_hosts = registry.names_for(Platform.LINUX)
        if self.host_arg:
            match = registry.lookup(self.host_arg)
            if match is None or match[1] is not Platform.LINUX:
                raise ValidationError(
                    f"'{self.host_arg}' is not a valid Linux host",
                    remediation=[f"Available hosts: {', '.join(linux_hosts)}"],
                )
            return match[0]
        return choose_host(self.ctx.prompter, self.console, linux_hosts)

    def inspect(self, target: str) -> str:
        """Locate and vet the target device. Nothing is modified."""
        layout = self.settings.layout_path(self.ctx.repo_root, target)
        if not layout.is_file():
            raise ValidationError(f"Disk layout not found: {layout}")

        self.console.print("Reading disk configuration...", style="dim")
        device = self.inspector.read_device(layout)
        if not device:
            raise ValidationError(
                f"Could not parse disk device from {layout}",
                remediation=['Expected device = "/dev/xxx"; in the file'],
            )
        self.console.print(f"Layout configured for: {device}", style="green")

        if not self.inspector.layout_valid(layout):
            raise ValidationError(
                "Invalid disk layout syntax",
                remediation=[f"Run: {' '.join(NIX_EVAL)} --file '{layout}'"],
            )

        if not self.inspector.is_block_device(device):
            raise HostEnvironmentError(
                f"Disk {device} not found",
                remediation=[*self.inspector.available_disks(), f"Update {layout} with the correct device path."],
            )

        mounted = self.inspector.mounted_partitions(device)
        if mounted:
            raise HostEnvironmentError(
                f"{device} has mounted partitions",
                remediation=[*mounted, f"Unmount all partitions first: sudo umount {device}*"],
            )
        return device

    def show(self, device: str) -> None:
        size, model, partitions = self.inspector.details(device)
        table = Table(title="Disk details", show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Device", device)
        table.add_row("Size", size)
        table.add_row("Model", model)
        for part in partitions:
            table.add_row("Partition", part)
        self.console.print(table)

    def _collect_passphrase(self) -> str:
        passphrase = self.ctx.prompter.ask_secret("Enter LUKS passphrase for disk encryption: ")
        confirmation = self.ctx.prompter.ask_secret("Confirm LUKS passphrase: ")
        problems = passphrase_problems(passphrase, self.settings.provision.min_passphrase_length)
        if problems:
            raise ValidationError(problems[0], remediation=problems[1:])
        if passphrase != confirmation:
            raise ValidationError("Passphrases do not match")
        return passphrase

    def partition(self, device: str, layout: Path) -> None:
        """Erase, wipe and partition. Tracks whether the device has been touched."""
        try:
            self.device_mutated = True
            log_operation(self.ctx.repo_root, "disk.wipe", erased=ErasureCost(devices=1), metadata={"device": device})

            self.console.print(f"Securely erasing {device}...", style="dim")
            if self.runner(privileged(["blkdiscard", device]), capture=True).returncode == 0:
                self.console.print("TRIM/discard complete", style="green")
            else:
                self.console.print("blkdiscard not supported (no TRIM on this device)", style="yellow")

            self.console.print(f"Wiping partition signatures on {device}...", style="dim")
            result = self.runner(privileged(["wipefs", "-a", device]), capture=True)
            if result.returncode != 0:
                raise ValidationError("wipefs failed", remediation=[(result.stderr or "").strip()])

            passphrase = self._collect_passphrase()
            self.console.print("Running partitioner...", style="dim")
            # Passphrase goes over stdin, never into argv
            result = self.runner(
                privileged([*DISKO, str(layout)]),
                input=f"{passphrase}\n{passphrase}\n",
                capture=False,
            )
            del passphrase
            if result.returncode != 0:
                raise ValidationError("Partitioner failed")
            self.device_mutated = False
        except Exception as e:
            if not self.device_mutated:
                raise
            raise PartialDeviceStateError(
                f"Provisioning failed after {device} was modified: {e}",
                device=device,
                remediation=["Re-run nixcfg provision, or partition the disk manually."],
            ) from e
        except BaseException:
            if self.device_mutated:
                self.console.print(
                    f"WARNING: interrupted after disk was modified! {device} may be in a partial state.",
                    style="bold red",
                )
            raise

    def copy_runtime_key(self) -> str:
        """
        Copy the staged Layer B key into the target root.

        Returns "copied", "unchanged" or "missing". Safe to re-run.
        """
        keys = self.settings.keys
        source = keys.layer_b_staging_key
        dest = self.settings.provision.target_root.rstrip("/") + keys.layer_b_key

        if not Path(source).is_file():
            self.console.print(f"Warning: sops-nix key not found at {source}", style="yellow")
            self.console.print(
                "You will need to copy it manually before installing:\n"
                f"  sudo install -D -m 600 -o root -g root <your-key-path> {dest}",
                style="dim",
            )
            return "missing"

        if self.runner(privileged(["cmp", "-s", source, dest]), capture=True).returncode == 0:
            self.console.print(f"sops-nix key already installed at {dest}", style="green")
            return "unchanged"

        self.console.print("Copying sops-nix key to target system...", style="dim")
        result = self.runner(
            privileged(["install", "-D", "-m", "600", "-o", "root", "-g", "root", source, dest]),
            capture=True,
        )
        if result.returncode != 0:
            raise HostEnvironmentError(
                f"Failed to copy sops-nix key to {dest}",
                remediation=[(result.stderr or "").strip() or "Copy it manually before installing."],
            )
        log_operation(self.ctx.repo_root, "key.copy", created=CreationSummary(files=1), metadata={"dest": dest})
        self.console.print("sops-nix key installed", style="green")
        return "copied"

    def run(self) -> WorkflowOutcome:
        require_host(self.ctx, allow_known=False)
        target = self.resolve_target()
        self.console.print(f"Partition setup ({target})", style="green")

        device = self.inspect(target)
        self.show(device)

        if not self.ctx.gate.confirm(
            "disk.wipe",
            "Destroy all data on this disk?",
            destination=device,
            warning=f"This will PERMANENTLY DESTROY all data on {device}. This action is IRREVERSIBLE.",
        ):
            return WorkflowOutcome.decline("Aborted. No changes made.")

        self.partition(device, self.settings.layout_path(self.ctx.repo_root, target))
        self.console.print("Partitioning complete!", style="green")

        self.copy_runtime_key()
        self.console.print(f"Next step: nixcfg deploy {target}", style="dim")
        return WorkflowOutcome.done(f"Provisioned {device}")
