"""Study and schedule resources for Bridge Service."""
