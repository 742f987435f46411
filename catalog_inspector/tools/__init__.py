"""
External collaborators: record storage, funnel events and spreadsheet export.
"""
