"""
Collections module: user-curated, ordered lists of mods (public or private).
"""
