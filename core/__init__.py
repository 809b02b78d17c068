"""Core (UI-agnostic) pipeline logic.

This package contains:
- the five-stage pipeline controller and stage registry
- feature strategies (pandas compute + Altair -> Vega-Lite charts)
- upload parsing, field mapping and record/object storage
- session context, settings and the remote analytics client
"""
