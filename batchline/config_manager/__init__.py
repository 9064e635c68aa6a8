"""Configuration models and resolution."""
