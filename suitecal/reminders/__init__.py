"""Reminder trigger computation and dispatch."""
