"""
Core inspector: schema registry, value extraction, rendering, link
resolution, editing and the error taxonomy.
"""
