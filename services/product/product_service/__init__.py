"""
Product Service - catalog CRUD, search and stock management.
"""
