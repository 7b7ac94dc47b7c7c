"""Configuration, track discovery, per-region step execution and a container-based deploy command for infrastructure as code."""

__version__ = "0.1.0"