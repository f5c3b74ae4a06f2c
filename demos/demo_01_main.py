import time
import requests
import json

REG = "http://127.0.0.1:9000"

def jprint(x): print(json.dumps(x, indent=2))

def heartbeat(service, address):
    r = requests.post(f"{REG}/heartbeat", json={"serviceName": service, "address": address}, timeout=5)
    r.raise_for_status()
    return r.json()

def discover(service):
    r = requests.get(f"{REG}/discover", params={"serviceName": service}, timeout=5)
    r.raise_for_status()
    return r.json()

def unregister(service, address):
    r = requests.post(f"{REG}/unregister", json={"serviceName": service, "address": address}, timeout=5)
    if r.status_code == 404:
        return r.json()
    r.raise_for_status()
    return r.json()

def health():
    r = requests.get(f"{REG}/health", timeout=30)
    r.raise_for_status()
    return r.json()

if __name__ == "__main__":
    print("=== Register ===")
    jprint(heartbeat("orders", "10.0.0.1:8080"))
    jprint(heartbeat("orders", "10.0.0.2:8080"))
    jprint(heartbeat("billing", "10.0.1.1:8080"))

    print("\n=== Heartbeat (same address again) ===")
    time.sleep(1)
    jprint(heartbeat("orders", "10.0.0.1:8080"))

    print("\n=== Discover ===")
    jprint(discover("orders"))
    jprint(discover("billing"))
    jprint(discover("unknown"))

    print("\n=== Unregister (twice: second is 404) ===")
    jprint(unregister("orders", "10.0.0.2:8080"))
    jprint(unregister("orders", "10.0.0.2:8080"))
    jprint(discover("orders"))

    print("\n=== Health (sweeps every service) ===")
    jprint(health())
