"""Job submission, polling, lifecycle tracking and uploads."""
