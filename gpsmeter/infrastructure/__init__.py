"""gpsmeter infrastructure - storage and location adapters."""
