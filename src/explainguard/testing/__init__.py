"""In-memory fakes for the host platform, timers and notifications."""
