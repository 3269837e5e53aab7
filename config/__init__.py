"""Configuration package for EZ-HD."""
