"""Kubernetes probes."""
