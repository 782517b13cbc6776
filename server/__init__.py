"""
Server modules for Quest Map application.

This package contains FastAPI router modules for handling API endpoints
and broadcasting updates to connected clients.

Author: Matthew Picone (mail@matthewpicone.com)
Date: 2025-12-17
"""
