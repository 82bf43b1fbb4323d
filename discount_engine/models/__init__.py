# discount_engine/models/__init__.py
