"""
Catalog module: games and categories.

Games carry the upload form schema used when creating mods for that game.
"""
