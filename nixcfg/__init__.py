"""nixcfg - secrets-safe workflow orchestrator for a Nix configuration repository."""

__version__ = "0.1.0"
