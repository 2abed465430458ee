"""Shared configuration, identity and logging helpers."""
