"""Configuration: settings and the source registry."""
