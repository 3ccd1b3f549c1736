"""cronpilot — in-process cron scheduler for agent automations."""

__version__ = "0.1.0"
