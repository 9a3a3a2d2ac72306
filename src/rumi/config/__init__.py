"""Settings loading for rumi.

Main components:
- rumi.config.loader: load and validate ``rumi.yaml``
- rumi.config.env_loader: ``${VAR}`` substitution and ``.env`` loading
- rumi.config.defaults: default paths, timeouts and retention
- rumi.config.validator: readable pydantic error messages
"""
