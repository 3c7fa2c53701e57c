# src/materialize/__init__.py — v1
