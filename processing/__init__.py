"""Pure transformations over loaded story facts."""
