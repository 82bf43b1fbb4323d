# discount_engine/utils/__init__.py
