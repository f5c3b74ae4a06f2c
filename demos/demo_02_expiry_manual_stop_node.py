import requests
import json

REG = "http://127.0.0.1:9000"
SERVICE = "failover"
def jprint(x): print(json.dumps(x, indent=2))

def heartbeat(address):
    r = requests.post(f"{REG}/heartbeat", json={"serviceName": SERVICE, "address": address}, timeout=5)
    r.raise_for_status()
    return r.json()

def discover():
    r = requests.get(f"{REG}/discover", params={"serviceName": SERVICE}, timeout=5)
    r.raise_for_status()
    return r.json()

if __name__ == "__main__":
    print("=== Register two nodes ===")
    jprint(heartbeat("10.0.0.1:8080"))
    jprint(heartbeat("10.0.0.2:8080"))
    jprint(discover())

    print("\nMANUAL STEP: keep renewing 10.0.0.1 (e.g. run agent.py with ADDRESS=10.0.0.1:8080).")
    print("Wait longer than HEARTBEAT_EXPIRE without renewing 10.0.0.2.")
    input("Press ENTER after the expiry window has passed")

    print("\n=== Discover after expiry (10.0.0.2 should be gone) ===")
    jprint(discover())

    print("\n=== Heartbeat from 10.0.0.2 again (registers it anew) ===")
    jprint(heartbeat("10.0.0.2:8080"))
