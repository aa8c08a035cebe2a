"""jobqueue test suite."""
