# winbuildcheck/host/__init__.py
