"""Pure billing algorithms. No I/O: callers load rows and persist results."""
