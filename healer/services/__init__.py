"""External services: GitHub (API + git CLI) and workflow dispatch."""
