"""
Quest Map application.

A FastAPI-powered tool for placing geolocated quests on a map, chaining them
into an ordered sequence and grouping dense areas into clusters.

Author: Matthew Picone (mail@matthewpicone.com)
Date: 2025-12-17
"""
