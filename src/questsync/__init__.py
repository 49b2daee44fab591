"""questsync: external calendar import for quests, tasks and schedule entries."""

__version__ = "0.1.0"
