#!/usr/bin/env python3
"""
MUNIQ smoke client (async)

Walks the browser flows against a running server started with
GATEWAY_BACKEND=mock:

  1) admin login from device A, token check from A (ok) and B (rejected)
  2) POST /api/register -> registration id
  3) POST /api/payment/create-order -> order id
  4) POST /mockpay/{order}/emit     -> payment id + signature
  5) POST /api/payment/verify       -> completed payment
  6) --race N: N concurrent verifies for one registration; exactly one
     may win, the rest must get 409

Usage:
  ADMIN_PASSWORD=... python -m muniq.smoke_client --base http://localhost:8000
  python -m muniq.smoke_client --race 20 --skip-auth
"""

import asyncio
import argparse
import os
import random
import string
import time
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

DEVICE_A = {
    "user-agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)",
    "accept-language": "en-US,en;q=0.9",
    "x-forwarded-for": "192.168.1.100",
}
DEVICE_B = {
    "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64)",
    "accept-language": "en-GB,en;q=0.9",
    "x-forwarded-for": "192.168.1.101",
}


def _rand_email() -> str:
    name = ''.join(
        random.choices(string.ascii_lowercase + string.digits, k=10)
    )
    return f"{name}@example.com"


@dataclass
class Check:
    name: str
    ok: bool
    detail: str = ""
    elapsed_s: float = 0.0


@dataclass
class Report:
    checks: List[Check] = field(default_factory=list)

    def add(self, name: str, ok: bool, detail: str = "", t0: float = 0.0):
        elapsed = time.perf_counter() - t0 if t0 else 0.0
        self.checks.append(Check(name, ok, detail, elapsed))

    def print(self):
        print("\n=== Smoke Summary ===")
        for c in self.checks:
            mark = "PASS" if c.ok else "FAIL"
            print(f"[{mark}] {c.name:<32} {c.elapsed_s:6.3f}s  {c.detail}")
        failed = sum(1 for c in self.checks if not c.ok)
        print(f"{len(self.checks) - failed}/{len(self.checks)} checks passed")

    @property
    def failed(self) -> bool:
        return any(not c.ok for c in self.checks)


async def check_auth(client: httpx.AsyncClient, base: str, password: str,
                     report: Report) -> None:
    t0 = time.perf_counter()
    resp = await client.post(f"{base}/api/admin/auth",
                             json={"password": password}, headers=DEVICE_A)
    if resp.status_code != 200:
        report.add("admin login", False, f"HTTP {resp.status_code}", t0)
        return
    token = resp.json()["token"]
    report.add("admin login", True, "", t0)

    bearer = {"authorization": f"Bearer {token}"}
    t0 = time.perf_counter()
    resp = await client.get(f"{base}/api/admin/auth",
                            headers={**DEVICE_A, **bearer})
    report.add("token valid on same device", resp.status_code == 200,
               f"HTTP {resp.status_code}", t0)

    t0 = time.perf_counter()
    resp = await client.get(f"{base}/api/admin/auth",
                            headers={**DEVICE_B, **bearer})
    msg = resp.json().get("message", "")
    report.add("token rejected on other device",
               resp.status_code == 401
               and msg == "Token not valid for this device",
               f"HTTP {resp.status_code} {msg}", t0)

    t0 = time.perf_counter()
    resp = await client.post(f"{base}/api/admin/auth",
                             json={"password": password + "x"},
                             headers=DEVICE_A)
    report.add("wrong password rejected", resp.status_code == 401,
               f"HTTP {resp.status_code}", t0)


async def register(client: httpx.AsyncClient, base: str) -> str:
    resp = await client.post(f"{base}/api/register", json={
        "first_name": "Smoke",
        "last_name": "Test",
        "email": _rand_email(),
        "standard": "11",
        "mun_experience": "beginner",
        "course_id": "mun_course",
        "workshop_slot": "2-4pm",
    })
    resp.raise_for_status()
    return resp.json()["data"]["id"]


async def checkout(client: httpx.AsyncClient, base: str,
                   registration_id: str) -> dict:
    """create-order + mock checkout; returns the verify payload."""
    resp = await client.post(f"{base}/api/payment/create-order", json={
        "amount": 999,
        "currency": "INR",
        "registrationId": registration_id,
        "customerDetails": {"name": "Smoke Test"},
    })
    resp.raise_for_status()
    order_id = resp.json()["data"]["orderId"]

    resp = await client.post(f"{base}/mockpay/{order_id}/emit")
    resp.raise_for_status()
    payload = resp.json()
    payload["registrationId"] = registration_id
    return payload


async def check_payment(client: httpx.AsyncClient, base: str,
                        report: Report) -> None:
    t0 = time.perf_counter()
    try:
        registration_id = await register(client, base)
        payload = await checkout(client, base, registration_id)
    except httpx.HTTPError as e:
        report.add("register + checkout", False, str(e), t0)
        return
    report.add("register + checkout", True, registration_id, t0)

    t0 = time.perf_counter()
    resp = await client.post(f"{base}/api/payment/verify", json=payload)
    report.add("gateway verify", resp.status_code == 200,
               f"HTTP {resp.status_code}", t0)

    t0 = time.perf_counter()
    bad = {**payload, "razorpay_signature": "0" * 64}
    resp = await client.post(f"{base}/api/payment/verify", json=bad)
    report.add("forged signature rejected", resp.status_code == 400,
               f"HTTP {resp.status_code}", t0)

    t0 = time.perf_counter()
    second = await checkout(client, base, registration_id)
    resp = await client.post(f"{base}/api/payment/verify", json=second)
    report.add("second payment rejected", resp.status_code == 409,
               f"HTTP {resp.status_code}", t0)


async def check_race(client: httpx.AsyncClient, base: str, n: int,
                     report: Report) -> None:
    t0 = time.perf_counter()
    registration_id = await register(client, base)
    payloads = [await checkout(client, base, registration_id)
                for _ in range(n)]

    async def one(p: dict) -> Optional[int]:
        try:
            r = await client.post(f"{base}/api/payment/verify", json=p)
            return r.status_code
        except httpx.HTTPError:
            return None

    codes = await asyncio.gather(*(one(p) for p in payloads))
    wins = codes.count(200)
    dups = codes.count(409)
    report.add(f"concurrent verify x{n}", wins == 1 and dups == n - 1,
               f"200={wins} 409={dups} other={n - wins - dups}", t0)


async def run_smoke(base: str, password: Optional[str], race: int,
                    skip_auth: bool) -> Report:
    report = Report()
    async with httpx.AsyncClient(
        timeout=30.0, headers={"User-Agent": "MuniqSmoke/1.0"}
    ) as client:
        if not skip_auth:
            await check_auth(client, base, password or "", report)
        await check_payment(client, base, report)
        if race > 1:
            await check_race(client, base, race, report)
    return report


def main():
    ap = argparse.ArgumentParser(description="MUNIQ smoke client")
    ap.add_argument("--base", default="http://localhost:8000",
                    help="Base URL of the app")
    ap.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"),
                    help="Admin password (default: $ADMIN_PASSWORD)")
    ap.add_argument("--race", type=int, default=0,
                    help="Concurrent verifies for one registration")
    ap.add_argument("--skip-auth", action="store_true",
                    help="Skip the admin login checks")
    args = ap.parse_args()

    if not args.skip_auth and not args.password:
        ap.error("ADMIN_PASSWORD is required unless --skip-auth is given")

    report = asyncio.run(run_smoke(
        base=args.base.rstrip("/"),
        password=args.password,
        race=args.race,
        skip_auth=args.skip_auth,
    ))
    report.print()
    raise SystemExit(1 if report.failed else 0)


if __name__ == "__main__":
    main()
