# src/tasksync/__init__.py

"""Offline-first task tracker: durable command log and server reconciliation."""

__version__ = "0.1.0"
