"""
Community size: density-based community-size classes for gridded population.

Pipeline builds a queen-contiguity neighbor graph over grid cells, smooths
population and land area over each cell's neighborhood, classifies the local
density into ordered community-size categories and applies a table of manual
override rules.
"""

__version__ = "0.1.0"
