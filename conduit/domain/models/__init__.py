"""Domain models: value objects, request/response and credential records, errors."""
