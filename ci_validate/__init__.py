"""Run an Actions-shaped validation workflow locally with the `validatekit` engine."""
