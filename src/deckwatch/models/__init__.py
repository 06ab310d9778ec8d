"""Pydantic models for deployment state, logs, probes and configuration."""
