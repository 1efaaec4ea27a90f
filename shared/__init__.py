"""Shared code for the urban-forest tools."""
