"""HTTP surface for LoomGraph."""
