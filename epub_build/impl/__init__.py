"""Task wiring for this build: leaf actions and named entry points."""
