"""
Catalog Inspector: schema-driven rendering, editing and analytics over
heterogeneous catalog records.
"""
__version__ = "0.1.0"
