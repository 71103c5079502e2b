# store_backend/__init__.py

# This file makes the 'store_backend' directory a Python package.
