"""Configuration helpers for registrar.

Brief:
    Groups logging initialization and option loading/validation used by the
    CLI entry point.

Inputs:
    - None.

Outputs:
    - Makes ``registrar.config.logging_config`` and
      ``registrar.config.config_parser`` importable.
"""
