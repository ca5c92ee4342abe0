"""
Algorithms package for the Deadlock Handling Simulator.
Contains resource-ordering prevention, Banker's avoidance, the allocation
pass, wait-for graph construction, cycle detection and recovery.
"""
