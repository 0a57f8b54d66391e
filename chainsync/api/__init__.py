"""
HTTP surface for operating the pipeline.
"""
