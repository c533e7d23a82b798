"""Domain Layer: value objects, error taxonomy, interfaces and events."""
