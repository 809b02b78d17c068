"""Streamlit stage renderers and page layout for the feature pipelines."""
