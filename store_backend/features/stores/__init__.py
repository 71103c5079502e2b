# store_backend/features/stores/__init__.py

# This file makes the 'stores' directory a Python package.
