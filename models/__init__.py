"""Models package for the Deadlock Handling Simulator."""
