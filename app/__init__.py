"""Slack decision tree builder and runner."""
