"""Engine: services, models and lifecycle."""
