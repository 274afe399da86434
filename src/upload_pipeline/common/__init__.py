"""Shared types, metrics, logging helpers and signal handling."""
