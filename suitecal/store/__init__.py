"""Collaborator protocols and reference implementations."""
