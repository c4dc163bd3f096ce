#!/usr/bin/env python3
"""
Main entry point for running the storefront locally without installing it.
Starts the gateway by default; pass "inventory" or "orders" to run a backend.
"""

import sys
from pathlib import Path

# Add the src directory to Python path
src_dir = Path(__file__).parent / "src"
sys.path.insert(0, str(src_dir))


def main():
    """Run the gateway or one of the backend services."""
    component = sys.argv[1] if len(sys.argv) > 1 else "gateway"

    if component == "gateway":
        from storefront.main import main as run
    elif component == "inventory":
        from storefront.services.inventory import main as run
    elif component == "orders":
        from storefront.services.orders import main as run
    else:
        sys.exit(f"Unknown component '{component}' (expected gateway, inventory or orders)")

    print(f"Starting storefront {component} locally...")
    run()


if __name__ == "__main__":
    main()
