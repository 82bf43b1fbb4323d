# discount_engine/services/__init__.py
