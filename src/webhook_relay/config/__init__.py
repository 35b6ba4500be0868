"""Configuration: pydantic-settings tree with YAML overlay."""
