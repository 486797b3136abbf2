"""
approval_config -- workflow definition YAML and engine settings.

Responsibility:
    Parses YAML workflow definitions into domain dataclasses, ships the
    built-in template gallery, and reads deployment settings from the
    environment through ``get_settings()``.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services`` / ``approval_api``.  The kernel MUST NEVER import
    from ``approval_config``.

Failure modes:
    - ``KeyError`` / ``ValueError`` -- malformed definition YAML.
    - ``DefinitionValidationError`` -- a parsed definition fails structural
      validation when published.
"""

from approval_config.loader import (
    TEMPLATE_DIR,
    compute_checksum,
    definition_to_dict,
    load_builtin_templates,
    load_definition_file,
    parse_definition,
    publish_directory,
)
from approval_config.settings import EngineSettings, get_settings, settings_from_env

__all__ = [
    "EngineSettings",
    "TEMPLATE_DIR",
    "compute_checksum",
    "definition_to_dict",
    "get_settings",
    "load_builtin_templates",
    "load_definition_file",
    "parse_definition",
    "publish_directory",
    "settings_from_env",
]
