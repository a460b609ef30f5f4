"""SolveGate: usage-metered homework solving gateway."""
