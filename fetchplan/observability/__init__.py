"""Structured logging and Prometheus metrics for fetchplan."""
