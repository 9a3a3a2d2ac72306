"""rumi command implementations."""
