"""
Dynamic upload form schema (per game): field model, editing operations, rendering.
"""
