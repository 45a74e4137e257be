"""Pure training-math core: rounding, lookups, strategies, resolution, progression."""
