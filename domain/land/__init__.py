"""Land App map profiles and nature reporting."""
