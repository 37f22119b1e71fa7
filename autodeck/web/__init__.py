"""HTTP surface for the deck runtime."""
