"""Notification delivery maintenance tasks."""
