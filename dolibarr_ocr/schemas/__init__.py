"""
Pydantic schemas for API request and response validation.

Wire format is camelCase; models expose snake_case attributes with camelCase
aliases and FastAPI serializes responses by alias.
"""
