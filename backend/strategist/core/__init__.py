"""Core configuration, errors and provider clients."""
