# scripts/test/check_protect_conn.py
"""
Tests connectivity to the Protect console named in the credentials secret,
then checks the login endpoint accepts the stored username and password.
Usage: python scripts/test/check_protect_conn.py
       python scripts/test/check_protect_conn.py --skip-login
"""

import sys
import os
import argparse
import asyncio
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import httpx
from event_backup import clients
from event_backup.config import settings
from event_backup.services.credentials_service import CredentialsService


async def check_console(hostname: str, username: str, password: str, skip_login: bool) -> dict:
    result = {"hostname": hostname, "reachable": False, "login": "skipped"}
    async with httpx.AsyncClient(verify=False, timeout=10) as client:
        try:
            resp = await client.get(hostname)
            result["reachable"] = resp.status_code < 500
            result["status"] = resp.status_code
        except httpx.ConnectError:
            result["error"] = "Connection refused / unreachable"
            return result
        except httpx.ReadTimeout:
            result["error"] = "Timeout"
            return result

        if skip_login:
            return result
        resp = await client.post(
            f"{hostname}/api/auth/login",
            json={"username": username, "password": password, "rememberMe": False},
        )
        result["login"] = "ok" if resp.status_code == 200 else f"HTTP {resp.status_code}"
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--skip-login", action="store_true")
    args = parser.parse_args()

    service = CredentialsService(clients.secrets_client(), settings.UNIFI_CREDENTIALS_SECRET_ARN)
    creds = service.get_credentials()

    print(f"\n{'='*60}")
    print(f"  Protect console check: {creds.hostname}")
    print(f"{'='*60}")
    r = asyncio.run(check_console(creds.hostname, creds.username, creds.password, args.skip_login))
    status = "✅" if r["reachable"] else "❌"
    print(f"{status} reachable: {r['reachable']} | login: {r['login']}")
    if "error" in r:
        print(f"   Error: {r['error']}")
    sys.exit(0 if r["reachable"] else 1)
