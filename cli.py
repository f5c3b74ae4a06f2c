import argparse
import json
import requests

DEFAULT_REGISTRY = "http://127.0.0.1:9000"


def pr(x):
    print(json.dumps(x, indent=2))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="registry-cli")
    p.add_argument("--registry", default=DEFAULT_REGISTRY)

    sub = p.add_subparsers(dest="cmd", required=True)

    hb = sub.add_parser("heartbeat")
    hb.add_argument("--service", required=True)
    hb.add_argument("--address", required=True)

    disc = sub.add_parser("discover")
    disc.add_argument("--service", required=True)

    unreg = sub.add_parser("unregister")
    unreg.add_argument("--service", required=True)
    unreg.add_argument("--address", required=True)

    sub.add_parser("health")
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    reg = args.registry.rstrip("/")

    if args.cmd == "heartbeat":
        r = requests.post(f"{reg}/heartbeat", json={
            "serviceName": args.service,
            "address": args.address,
        }, timeout=5)
        r.raise_for_status()
        pr(r.json())

    elif args.cmd == "discover":
        r = requests.get(f"{reg}/discover", params={"serviceName": args.service}, timeout=5)
        r.raise_for_status()
        pr(r.json())

    elif args.cmd == "unregister":
        r = requests.post(f"{reg}/unregister", json={
            "serviceName": args.service,
            "address": args.address,
        }, timeout=5)
        if r.status_code == 404:
            pr({"error": r.json().get("error", "not_found"), "service": args.service, "address": args.address})
            return
        r.raise_for_status()
        pr(r.json())

    elif args.cmd == "health":
        r = requests.get(f"{reg}/health", timeout=30)
        r.raise_for_status()
        pr(r.json())


if __name__ == "__main__":
    main()
