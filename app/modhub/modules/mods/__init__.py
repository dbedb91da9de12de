"""
Mods module.

- Public browse/search/detail with pagination
- Likes, ratings (1..5, average kept on mod_stats) and download tracking
- Mod creation validates custom values against the game's form schema
"""
