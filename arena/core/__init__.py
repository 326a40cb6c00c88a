"""Core module for the Trading Arena: config, models, errors, scheduler and engine."""
