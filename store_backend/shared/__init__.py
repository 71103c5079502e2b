# store_backend/shared/__init__.py

# This file makes the 'shared' directory a Python package.
