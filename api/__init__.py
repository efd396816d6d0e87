"""
FastAPI REST API for the book rating catalog.

This module provides:
- Signup and login with bearer tokens
- Book creation, owner-only editing and deletion, with cover images
- One rating per user per book, with a maintained average
- Filtered, paginated listing and best-rated books
"""
