"""Condition evaluation, requirement resolution and lookup services."""
