#!/usr/bin/env python3
"""
Master key setup script for the merchant relay.

Prints a fresh MASTER_KEY, or validates the one currently configured.
Rotating the key logs out every session, since cookies sealed with the old
key can no longer be opened.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from merchant_relay.core.config import settings
from merchant_relay.core.security import generate_master_key, load_master_key


def main():
    """Validate the configured key with --check, otherwise print a new one"""
    if "--check" in sys.argv[1:]:
        try:
            load_master_key(settings.master_key)
        except ValueError as e:
            print(f"MASTER_KEY is not usable: {e}")
            return False
        print("MASTER_KEY is valid")
        return True

    print(f"MASTER_KEY={generate_master_key()}")
    return True


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
