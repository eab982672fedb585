"""Storage, delivery and scheduling services used by the enforcement core."""
