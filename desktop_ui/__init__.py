"""Qt bridge between the desktop shell and the core application state."""
