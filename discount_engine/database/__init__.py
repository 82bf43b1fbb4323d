# discount_engine/database/__init__.py
