"""taskcycle - task lifecycle reconciliation engine for shared chore groups."""

__version__ = "0.1.0"
