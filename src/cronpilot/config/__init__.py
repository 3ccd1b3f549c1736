"""cronpilot configuration."""
