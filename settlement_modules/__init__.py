"""Department-facing modules built on the settlement kernel."""
