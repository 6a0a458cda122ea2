"""YAML processing-chain presets, read via importlib.resources."""
