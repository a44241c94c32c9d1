"""
Result merging, evidence indexing and report rendering.
"""
