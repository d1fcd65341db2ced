"""Command implementations behind the click entry point."""
