"""Sample parametric lessons shipped with the package."""
