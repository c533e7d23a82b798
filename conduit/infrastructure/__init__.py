"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the pipeline to the outside world (HTTP, provider APIs, files,
console) by implementing the interfaces defined in the domain layer.
"""
