# store_backend/features/payment/__init__.py

# This file makes the 'payment' directory a Python package.
