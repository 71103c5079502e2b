# store_backend/api/__init__.py

# This file makes the 'api' directory a Python package.
