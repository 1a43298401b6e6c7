"""Pure calculation components of the commission engine."""
