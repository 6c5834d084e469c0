"""Core value types, enumerations and error classes."""
