#!/usr/bin/env python3
"""
Release and configuration validation.
JSON schema validation plus governance rules from config/rules.yaml.
"""

import json
from pathlib import Path

import jsonschema
import yaml

SCHEMA_DIR = Path(__file__).parent.parent / "schemas"


def load_yaml(file_path):
    """Load YAML file safely."""
    try:
        with open(file_path, 'r') as f:
            return yaml.safe_load(f), None
    except yaml.YAMLError as e:
        return None, str(e)
    except OSError as e:
        return None, str(e)


def load_schema(name):
    with open(SCHEMA_DIR / name, 'r') as f:
        return json.load(f)


def validate_against_schema(document, schema_name):
    """
    Validate a document against one of the bundled JSON schemas.
    Returns (is_valid, errors_list)
    """
    try:
        schema = load_schema(schema_name)
    except (OSError, ValueError) as e:
        return False, [f"Error loading schema file {schema_name}: {e}"]

    validator = jsonschema.Draft7Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(document), key=lambda e: list(e.path)):
        error_path = ' -> '.join(str(p) for p in error.path) if error.path else 'root'
        errors.append(f"Schema validation failed at '{error_path}': {error.message}")
    return len(errors) == 0, errors


def check_rules(release, config, rules):
    """Apply governance rules. Returns list of errors."""
    errors = []

    hosts = config.get('hosts', {})
    target = release.get('target_host', '')
    if target not in hosts:
        errors.append(f"Target host '{target}' not found in configuration")
        return errors

    target_env = hosts[target].get('env_type', '')

    # RULE 1: Prod needs change request
    rule = rules.get('require_prod_change_request', {})
    if rule.get('enabled'):
        applies_to = rule.get('applies_to', ['prod'])
        if target_env in applies_to and not release.get('change_request'):
            errors.append(rule.get('message', 'Change request required'))

    # RULE 2: Prebuilt artifacts on prod must declare their digest
    rule = rules.get('require_prod_artifact_digest', {})
    if rule.get('enabled'):
        applies_to = rule.get('applies_to', ['prod'])
        if target_env in applies_to and release.get('artifact') and not release.get('digest'):
            errors.append(rule.get('message', 'Prebuilt artifact requires a digest'))

    return errors


def validate_release(release_file, config, rules=None):
    """
    Validate a release file.
    Uses JSON schema validation + governance rules.
    """
    release_path = Path(release_file)

    if not release_path.exists():
        return False, [f"File not found: {release_file}"]

    release, err = load_yaml(release_path)
    if err:
        return False, [f"YAML syntax error: {err}"]

    if not release:
        return False, ["Release file is empty"]

    is_valid, schema_errors = validate_against_schema(release, 'release-schema.json')
    if not is_valid:
        return False, schema_errors

    errors = check_rules(release, config, rules or {})
    return len(errors) == 0, errors


def validate_config(config):
    """Validate the loaded deployment configuration."""
    if not config:
        return False, ["Configuration is empty"]
    return validate_against_schema(config, 'deploy-config-schema.json')
