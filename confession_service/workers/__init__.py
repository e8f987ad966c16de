"""Taskiq task modules."""
