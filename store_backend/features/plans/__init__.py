# store_backend/features/plans/__init__.py

# This file makes the 'plans' directory a Python package.
