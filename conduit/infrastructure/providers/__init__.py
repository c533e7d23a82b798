"""Provider registry, configuration models and adapters."""
