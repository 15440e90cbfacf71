#!/usr/bin/env python3
"""
Policy registry validation script.
Checks endpoint registry / role default YAML files before they are deployed.
"""

import os
import sys
from pathlib import Path
from typing import List

from shared.errors import ValidationError
from service_policy.app.registry.loader import build_registry, load_registry_document


def validate_registry(registry_path: Path) -> List[str]:
    """Validate a single registry file."""
    errors = []

    try:
        document = load_registry_document(registry_path)
        registry, baselines = build_registry(document)
    except ValidationError as e:
        errors.append(e.message)
        return errors

    if not registry.entries:
        errors.append("No endpoint patterns registered; every endpoint gets the default class")

    if not baselines:
        errors.append("No roles defined; every request without a grant or rule is denied")

    seen = set()
    for entry in registry.entries:
        if entry.pattern in seen:
            errors.append(f"Duplicate endpoint pattern: {entry.pattern}")
        seen.add(entry.pattern)

    for role, baseline in sorted(baselines.items()):
        if not baseline.access:
            errors.append(f"Role {role} grants no access")

    return errors


def main(argv: List[str]) -> int:
    """Validate the files named on the command line, or POLICY_REGISTRY_FILE."""
    paths = [Path(p) for p in argv] or (
        [Path(os.environ["POLICY_REGISTRY_FILE"])] if os.environ.get("POLICY_REGISTRY_FILE") else []
    )

    if not paths:
        print("Usage: validate_policy_registry.py <registry.yaml> [...]")
        return 1

    print("Validating policy registries...")
    total_errors = 0

    for path in paths:
        errors = validate_registry(path)
        if errors:
            print(f"❌ {path}: {len(errors)} validation errors")
            for error in errors:
                print(f"   - {error}")
            total_errors += len(errors)
        else:
            print(f"✅ {path}: registry is valid")

    print(f"\nValidation complete: {total_errors} total errors")
    return 0 if total_errors == 0 else 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
