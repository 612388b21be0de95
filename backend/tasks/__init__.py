# tasks/__init__.py
