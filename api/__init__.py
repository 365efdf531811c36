"""HTTP surface for hrflow."""
