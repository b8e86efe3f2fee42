"""Personal productivity hub: live-synced projects, tasks and habits."""

__version__ = "0.1.0"
