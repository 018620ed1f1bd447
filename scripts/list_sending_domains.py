# file: scripts/list_sending_domains.py
#!/usr/bin/env python3
"""Print the verified sending domains of the Resend account"""

import sys
import asyncio
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import get_settings
from app.errors import ConfigurationError, DeliveryError
from app.tools.resend import DeliveryClient

async def list_domains():
    client = DeliveryClient(get_settings().resend_api_key)
    try:
        return await client.list_verified_domains()
    finally:
        await client.close()

if __name__ == "__main__":
    try:
        domains = asyncio.run(list_domains())
    except (ConfigurationError, DeliveryError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    for domain in domains:
        print(domain)
    if not domains:
        print("No verified domain")
