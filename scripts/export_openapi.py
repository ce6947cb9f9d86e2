#!/usr/bin/env python3
"""
Write the API's OpenAPI document to openapi.yaml in the project root.

Usage:
    python scripts/export_openapi.py [output-path]
"""

import sys
from pathlib import Path

import yaml

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.main import app  # noqa: E402


def list_operations(document):
    """Print every route in the document with its operationId."""
    paths = document.get('paths', {})

    print(f"Found {len(paths)} paths:")
    for path, methods in paths.items():
        for method, details in methods.items():
            if method.upper() in ['GET', 'POST', 'PUT', 'DELETE', 'PATCH']:
                print(f"  - {method.upper()} {path} -> {details.get('operationId', '?')}")


def main():
    output = Path(sys.argv[1]) if len(sys.argv) > 1 else project_root / "openapi.yaml"

    document = app.openapi()
    list_operations(document)

    schemas = document.get('components', {}).get('schemas', {})
    print(f"Found {len(schemas)} schemas")

    with open(output, 'w') as f:
        yaml.safe_dump(document, f, sort_keys=False, allow_unicode=True)

    print(f"\n✅ OpenAPI document written to {output}")


if __name__ == "__main__":
    main()
