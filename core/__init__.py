"""Shared building blocks: registry, models, cache, health, events and config."""
