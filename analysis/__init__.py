"""Analysis package for the Deadlock Handling Simulator."""
