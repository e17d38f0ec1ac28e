"""Retryability policy evaluation."""
