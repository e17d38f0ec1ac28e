"""Cluster-wide execution locks."""
