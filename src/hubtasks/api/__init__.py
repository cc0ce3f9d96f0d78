"""HTTP routes exposing the orchestrator."""
