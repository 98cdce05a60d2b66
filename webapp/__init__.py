"""HTTP entrypoint and runtime wiring."""
