"""Core Application Layer: the request pipeline and its caller-facing facade.

Composes the infrastructure components behind ``ApiClient`` and converts
failures into tool responses.
"""
