"""
Stores app: merchant storefronts, product catalog, carts, wishlists and reviews.
"""
