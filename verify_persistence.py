import time
import subprocess
import httpx
import sys
import os
import signal
import uuid

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
ACCOUNT = f"PERSIST{uuid.uuid4().hex[:8].upper()}"
AMOUNT = "1500.00"

def start_server(env=None):
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env
    )

def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()

def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        except Exception as e:
            print(f"Connect error: {e}")
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False

def run_verification():
    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server(env={**os.environ, "DB_ECHO": "True"})  # Enable echo to see SQL

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Create Customer
        print(f"\n--- [Step 2] Creating Customer {ACCOUNT} ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/customers", json={
            "account_number": ACCOUNT,
            "customer_name": "Persistence Check",
            "issue_date": "2024-01-01",
            "interest_rate": "9.5",
            "tenure_months": 24,
            "outstanding_balance": "50000.00"
        })
        if resp.status_code != 201:
            print(f"❌ Customer Creation Failed: {resp.status_code} {resp.text}")
            raise Exception("Customer creation failed")
        print("✅ Customer Created")

        # 3. Apply Payment
        print("\n--- [Step 3] Applying Payment ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/payments", json={
            "account_number": ACCOUNT,
            "amount": AMOUNT
        })
        if resp.status_code != 201:
            print(f"❌ Payment Failed: {resp.status_code} {resp.text}")
            raise Exception("Payment failed")
        print("✅ Payment Applied")
        print(resp.json())

    finally:
        print("\n--- [Step 4] Stopping Server ---")
        stop_server(proc)

    time.sleep(2) # Wait for port release

    # 4. Restart Server
    print("\n--- [Step 5] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        print("\n--- [Step 6] Verifying Ledger After Restart ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/payments/{ACCOUNT}")
        if resp.status_code != 200 or resp.json()["total"] != 1:
            print(f"❌ Ledger Check Failed: {resp.status_code} {resp.text}")
            raise Exception("Payment not persisted")
        print("✅ Payment Persisted")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/customers/{ACCOUNT}/reconciliation")
        report = resp.json()
        if resp.status_code == 200 and report["in_balance"] and report["outstanding_balance"] == "48500.00":
            print("✅ Balance Reconciled")
            print(report)
        else:
            print(f"❌ Reconciliation Failed: {resp.status_code} {resp.text}")
            raise Exception("Balance not persisted")

    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)

if __name__ == "__main__":
    run_verification()
