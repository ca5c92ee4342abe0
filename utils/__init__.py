"""Utilities package for the Deadlock Handling Simulator."""
