"""XeroxChat realtime engine."""
