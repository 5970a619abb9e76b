# Diagnostics HTTP API.
# Created: 2026-10-18
