# winbuildcheck/core/__init__.py
